"""SQL account store backed by SQLAlchemy's async ORM."""

from __future__ import annotations

from datetime import UTC, datetime

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from .db.models import MailAccountRow, MailFilterRow, MailFilterRuleRow, MailImportErrorRow
from .exceptions import PersistenceFailure
from .interfaces import AccountStore
from .models import MailAccount, MailFilter, MailFilterRule, MailImportError

logger = structlog.get_logger()


def _aware(value: datetime) -> datetime:
    # SQLite drops the offset of timezone-aware columns
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _to_model(row: MailAccountRow) -> MailAccount:
    return MailAccount(
        id=row.id,
        owner=row.owner,
        protocol=row.protocol,
        host=row.host,
        port=row.port,
        username=row.username,
        password=row.password,
        folder=row.folder,
        last_uid=row.last_uid,
        mark_seen=row.mark_seen,
        mark_deleted=row.mark_deleted,
        active=row.active,
        filters=[
            MailFilter(
                path=f.path,
                grouping=f.grouping,
                active=f.active,
                rules=[
                    MailFilterRule(field=r.field, operation=r.operation, value=r.value, active=r.active)
                    for r in f.rules
                ],
            )
            for f in row.filters
        ],
        import_errors=[
            MailImportError(
                uid=e.uid,
                subject=e.subject,
                error=e.error,
                imported_at=_aware(e.imported_at),
            )
            for e in row.import_errors
        ],
    )


def _error_row(error: MailImportError) -> MailImportErrorRow:
    return MailImportErrorRow(
        uid=error.uid,
        subject=error.subject,
        error=error.error,
        imported_at=error.imported_at,
    )


class SqlAccountStore(AccountStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _get_row(self, session: AsyncSession, account_id: int) -> MailAccountRow:
        stmt = (
            select(MailAccountRow)
            .where(MailAccountRow.id == account_id)
            .options(
                selectinload(MailAccountRow.filters).selectinload(MailFilterRow.rules),
                selectinload(MailAccountRow.import_errors),
            )
        )
        row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
            raise LookupError(f"Mail account {account_id} not found")
        return row

    async def load(self, account_id: int) -> MailAccount:
        async with self._session_factory() as session:
            return _to_model(await self._get_row(session, account_id))

    async def update(self, account: MailAccount) -> None:
        """Persist cursor and error ledger of *account*."""
        try:
            async with self._session_factory() as session:
                row = await self._get_row(session, account.id)
                row.last_uid = account.last_uid

                wanted = {error.uid for error in account.import_errors}
                row.import_errors = [e for e in row.import_errors if e.uid in wanted]
                known = {e.uid for e in row.import_errors}
                for error in account.import_errors:
                    if error.uid not in known:
                        row.import_errors.append(_error_row(error))
                        known.add(error.uid)

                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Cannot update mail account {account.id}: {exc}") from exc
        logger.debug(
            "account_updated",
            account_id=account.id,
            last_uid=account.last_uid,
            import_errors=len(account.import_errors),
        )

    async def create(self, account: MailAccount) -> MailAccount:
        """Insert a new account with its filters; returns it with the assigned id."""
        row = MailAccountRow(
            owner=account.owner,
            protocol=account.protocol.value,
            host=account.host,
            port=account.port,
            username=account.username,
            password=account.password.get_secret_value(),
            folder=account.folder,
            last_uid=account.last_uid,
            mark_seen=account.mark_seen,
            mark_deleted=account.mark_deleted,
            active=account.active,
            filters=[
                MailFilterRow(
                    position=position,
                    path=f.path,
                    grouping=f.grouping,
                    active=f.active,
                    rules=[
                        MailFilterRuleRow(field=r.field, operation=r.operation, value=r.value, active=r.active)
                        for r in f.rules
                    ],
                )
                for position, f in enumerate(account.filters)
            ],
            import_errors=[_error_row(e) for e in account.import_errors],
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            account_id = row.id
        logger.info("account_created", account_id=account_id, owner=account.owner)
        return await self.load(account_id)
