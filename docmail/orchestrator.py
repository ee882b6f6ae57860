"""ImportOrchestrator: one import run of one mail account.

Per message: fetch, parse, route, store the mail node and its attachments,
then the flag policy and the cursor / error-ledger bookkeeping.  A failing
message never stops the run; only connection and account-store failures do.
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass

import structlog

from .attachments import AttachmentImporter
from .exceptions import PersistenceFailure
from .fetcher import IncrementalFetcher
from .filters import select_filters
from .interfaces import AccountStore, Repository
from .mailbox import MailboxConnector, MailboxSession
from .models import (
    NO_SUBJECT,
    CanonicalMail,
    FetchedMessage,
    MailAccount,
    MailImportError,
    ParsedMessage,
)
from .outlook import OutlookParser
from .parser import MessageParser, extract_subject
from .paths import PathResolver
from .text import escape_name

logger = structlog.get_logger()


@dataclass(frozen=True)
class Destination:
    """A folder a mail is routed to, optionally grouped by received date."""

    path: str
    grouping: bool = False


class ImportOrchestrator:
    def __init__(
        self,
        connector: MailboxConnector,
        repository: Repository,
        account_store: AccountStore,
        paths: PathResolver,
        attachments: AttachmentImporter,
        parser: MessageParser | None = None,
        outlook_parser: OutlookParser | None = None,
        fetcher: IncrementalFetcher | None = None,
    ) -> None:
        self._connector = connector
        self._repository = repository
        self._account_store = account_store
        self._paths = paths
        self._attachments = attachments
        self._parser = parser or MessageParser()
        self._outlook_parser = outlook_parser or OutlookParser()
        self._fetcher = fetcher or IncrementalFetcher()

    # ------------------------------------------------------------------
    # Mailbox import
    # ------------------------------------------------------------------

    async def import_messages(self, account: MailAccount) -> str | None:
        """Import every new message of *account*.

        Returns the error text of the last failed message, or ``None`` when
        all messages were imported.  Raises
        :class:`~docmail.exceptions.ConnectionFailure` and
        :class:`~docmail.exceptions.PersistenceFailure`.
        """
        if not account.active:
            logger.info("account_inactive_skipped", account_id=account.id)
            return None

        last_error: str | None = None
        imported = failed = 0

        async with self._connector.open(account) as session:
            for uid in await self._fetcher.candidates(session, account):
                account, error = await self._import_one(session, account, uid)
                if error is None:
                    imported += 1
                else:
                    failed += 1
                    last_error = error

        logger.info(
            "import_finished",
            account_id=account.id,
            imported=imported,
            failed=failed,
            last_uid=account.last_uid,
        )
        return last_error

    async def _import_one(
        self,
        session: MailboxSession,
        account: MailAccount,
        uid: str,
    ) -> tuple[MailAccount, str | None]:
        fetched: FetchedMessage | None = None
        try:
            try:
                fetched = await session.fetch(uid)
                await self._store_message(account, fetched)
            finally:
                await self._apply_flags(session, account, uid, fetched)

            if session.cursor_capable:
                account = account.model_copy(update={"last_uid": max(account.last_uid, int(uid))})
                await self._persist(account)
        except PersistenceFailure:
            raise
        except Exception as exc:
            logger.exception("message_import_failed", account_id=account.id, uid=uid)
            account = await self._record_failure(account, uid, fetched, exc)
            return account, str(exc) or type(exc).__name__
        return account, None

    async def _store_message(self, account: MailAccount, fetched: FetchedMessage) -> None:
        parsed = self._parser.parse(
            fetched.raw_bytes,
            received_date=fetched.internal_date,
            size=fetched.size,
        )
        name = f"{fetched.uid}-{escape_name(parsed.mail.subject or NO_SUBJECT)}"

        for destination in await self._destinations(account, parsed.mail):
            folder = await self._paths.resolve(
                destination.path,
                destination.grouping,
                parsed.mail.received_date,
            )
            await self._store_parsed(f"{folder.rstrip('/')}/{name}", parsed, account.owner)

    async def _destinations(self, account: MailAccount, mail: CanonicalMail) -> list[Destination]:
        if not account.filters:
            inbox = await self._paths.ensure_path(self._paths.inbox_path(account.owner))
            return [Destination(inbox, grouping=True)]
        return [Destination(f.path, f.grouping) for f in select_filters(account.filters, mail)]

    async def _store_parsed(self, path: str, parsed: ParsedMessage, owner: str) -> bool:
        """Create the mail node and its attachments unless *path* already exists."""
        if await self._repository.has_node(path):
            logger.info("mail_already_imported", path=path)
            return False

        mail = parsed.mail.with_path(path)
        uuid = await self._repository.create_mail(path, mail, owner)
        mail = mail.model_copy(update={"uuid": uuid})
        stored = await self._attachments.import_attachments(mail, parsed.attachments, owner)
        logger.info("mail_imported", path=path, uuid=uuid, attachments=len(stored))
        return True

    async def _apply_flags(
        self,
        session: MailboxSession,
        account: MailAccount,
        uid: str,
        fetched: FetchedMessage | None,
    ) -> None:
        if account.mark_seen:
            await session.set_seen(uid, True)
        elif fetched is not None:
            await session.set_seen(uid, fetched.seen)
        if account.mark_deleted:
            await session.set_deleted(uid)

    # ------------------------------------------------------------------
    # Run state
    # ------------------------------------------------------------------

    async def _record_failure(
        self,
        account: MailAccount,
        uid: str,
        fetched: FetchedMessage | None,
        exc: Exception,
    ) -> MailAccount:
        if account.has_error_for(uid):
            return account

        entry = MailImportError(
            uid=uid,
            subject=extract_subject(fetched.raw_bytes) if fetched is not None else "",
            error="".join(traceback.format_exception(exc)),
        )
        account = account.model_copy(update={"import_errors": [*account.import_errors, entry]})
        await self._persist(account)
        return account

    async def _persist(self, account: MailAccount) -> None:
        try:
            await self._account_store.update(account)
        except Exception as exc:
            raise PersistenceFailure(f"Cannot persist mail account {account.id}: {exc}") from exc

    # ------------------------------------------------------------------
    # Outlook upload
    # ------------------------------------------------------------------

    async def import_outlook_message(self, data: bytes, folder: str, owner: str) -> str:
        """Import an uploaded ``.msg`` file into *folder*; returns the node path."""
        parsed = self._outlook_parser.parse(data)
        path = f"{folder.rstrip('/')}/{escape_name(parsed.mail.subject or NO_SUBJECT)}"
        await self._store_parsed(path, parsed, owner)
        return path
