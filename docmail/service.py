"""MailEngine: wires the default adapters from configuration."""

from __future__ import annotations

import structlog

from .attachments import AttachmentImporter
from .audit import KafkaAuditSink, LogAuditSink
from .composer import MessageComposer
from .config import MailEngineConfig
from .db.engine import init_schema, make_engine, make_session_factory
from .dispatcher import Dispatcher
from .interfaces import AuditSink
from .mailbox import MailboxConnector
from .mimetypes import StdlibMimeTypeTable
from .orchestrator import ImportOrchestrator
from .paths import PathResolver
from .s3 import S3Repository
from .smtp import SmtpTransport
from .store import SqlAccountStore

logger = structlog.get_logger()


class MailEngine:
    """Owns adapter lifecycles and exposes the import and send flows.

    Use as ``async with MailEngine(config) as engine: ...``.
    """

    def __init__(self, config: MailEngineConfig) -> None:
        self._config = config
        self._db_engine = make_engine(config.database_url)
        self.account_store = SqlAccountStore(make_session_factory(self._db_engine))
        self.repository = S3Repository(config.s3)
        self.connector = MailboxConnector(timeout=config.imap_timeout_seconds)
        self.transport = SmtpTransport(config.smtp)
        self._kafka_audit = KafkaAuditSink(config.kafka, config.retry) if config.kafka.enabled else None
        audit: AuditSink = self._kafka_audit or LogAuditSink()

        mime_types = StdlibMimeTypeTable()
        paths = PathResolver(self.repository, config.mail_root, config.inbox_name)
        self.orchestrator = ImportOrchestrator(
            self.connector,
            self.repository,
            self.account_store,
            paths,
            AttachmentImporter(self.repository, mime_types),
        )
        composer = MessageComposer(config, self.repository, mime_types, self.transport.default_identity)
        self.dispatcher = Dispatcher(composer, self.transport, self.repository, audit)

    async def start(self) -> None:
        await init_schema(self._db_engine)
        await self.repository.start()
        if self._kafka_audit is not None:
            await self._kafka_audit.start()
        logger.info("mail_engine_started")

    async def stop(self) -> None:
        if self._kafka_audit is not None:
            await self._kafka_audit.stop()
        await self.repository.stop()
        await self._db_engine.dispose()
        logger.info("mail_engine_stopped")

    async def __aenter__(self) -> MailEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def import_account(self, account_id: int) -> str | None:
        account = await self.account_store.load(account_id)
        return await self.orchestrator.import_messages(account)

    async def test_account(self, account_id: int) -> None:
        account = await self.account_store.load(account_id)
        await self.connector.test_connection(account)
