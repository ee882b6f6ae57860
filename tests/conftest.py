"""Shared test fixtures for the docmail test suite."""

from __future__ import annotations

import uuid as uuidlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from email import encoders
from email.message import EmailMessage
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import pytest

from docmail.config import MailEngineConfig, S3Config, SmtpConfig
from docmail.exceptions import ItemExistsError, PathNotFoundError, RepositoryPolicyRejection
from docmail.interfaces import AccountStore, AuditSink, MimeTypeTable, Repository, Transport
from docmail.mailbox import MailboxSession
from docmail.mimetypes import StdlibMimeTypeTable
from docmail.models import (
    CanonicalMail,
    FetchedMessage,
    MailAccount,
    MailProtocol,
)
from docmail.text import parent_path

# ------------------------------------------------------------------
# Sample EML builders
# ------------------------------------------------------------------


def _build_plain_email(
    *,
    subject: str | None = "Test Subject",
    from_addr: str = "sender@example.com",
    to_addr: str | None = "recipient@example.com",
    body: str = "Hello, World!",
    date: str | None = "Sun, 01 Jun 2025 12:00:00 +0000",
    cc: str | None = None,
    bcc: str | None = None,
    received: str | None = None,
) -> bytes:
    """Build a simple plain-text email as raw bytes."""
    msg = MIMEText(body, "plain", "utf-8")
    if received:
        msg["Received"] = received
    if subject is not None:
        msg["Subject"] = subject
    msg["From"] = from_addr
    if to_addr is not None:
        msg["To"] = to_addr
    msg["Message-ID"] = "<test-001@example.com>"
    if date is not None:
        msg["Date"] = date
    if cc:
        msg["Cc"] = cc
    if bcc:
        msg["Bcc"] = bcc
    return msg.as_bytes()


def _build_html_email(*, body_html: str = "<p>Hello</p>", subject: str = "HTML Email") -> bytes:
    msg = MIMEText(body_html, "html", "utf-8")
    msg["Subject"] = subject
    msg["From"] = "sender@example.com"
    msg["To"] = "recipient@example.com"
    msg["Date"] = "Sun, 01 Jun 2025 12:00:00 +0000"
    return msg.as_bytes()


def _build_multipart_email(
    *,
    subject: str = "Multipart Email",
    body_text: str = "Plain body",
    body_html: str | None = "<p>HTML body</p>",
    attachments: list[tuple[str, str, bytes]] | None = None,
) -> bytes:
    """Build a multipart email with text, HTML, and optional attachments."""
    msg = MIMEMultipart("mixed")
    msg["Subject"] = subject
    msg["From"] = '"Sender Name" <sender@example.com>'
    msg["To"] = "recipient@example.com"
    msg["Date"] = "Sun, 01 Jun 2025 12:00:00 +0000"

    alt = MIMEMultipart("alternative")
    alt.attach(MIMEText(body_text, "plain", "utf-8"))
    if body_html is not None:
        alt.attach(MIMEText(body_html, "html", "utf-8"))
    msg.attach(alt)

    for filename, content_type, payload in attachments or []:
        maintype, subtype = content_type.split("/", 1)
        part = MIMEBase(maintype, subtype)
        part.set_payload(payload)
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", "attachment", filename=filename)
        msg.attach(part)

    return msg.as_bytes()


# ------------------------------------------------------------------
# In-memory collaborators
# ------------------------------------------------------------------


class InMemoryRepository(Repository):
    """Dictionary-backed repository; the root folder always exists."""

    def __init__(self) -> None:
        self.folders: dict[str, str] = {"/": "root"}
        self.mails: dict[str, CanonicalMail] = {}
        self.documents: dict[str, dict] = {}
        self.uuids: dict[str, str] = {}
        self.rejections: dict[str, RepositoryPolicyRejection] = {}
        self.create_folder_calls: list[str] = []

    def _new_uuid(self, path: str) -> str:
        uuid = str(uuidlib.uuid4())
        self.uuids[uuid] = path
        return uuid

    def _exists(self, path: str) -> bool:
        return path in self.folders or path in self.mails or path in self.documents

    async def has_node(self, path: str) -> bool:
        return self._exists(path)

    async def create_folder(self, path: str) -> str:
        self.create_folder_calls.append(path)
        if self._exists(path):
            raise ItemExistsError(path)
        uuid = self._new_uuid(path)
        self.folders[path] = uuid
        return uuid

    async def create_mail(self, path: str, mail: CanonicalMail, owner: str) -> str:
        if self._exists(path):
            raise ItemExistsError(path)
        uuid = self._new_uuid(path)
        self.mails[path] = mail.model_copy(update={"path": path, "uuid": uuid})
        return uuid

    async def create_document(
        self,
        path: str,
        content: bytes,
        size: int,
        owner: str,
        group_hint: str | None = None,
        mime_type: str = "application/octet-stream",
    ) -> str:
        name = path.rpartition("/")[2]
        if name in self.rejections:
            raise self.rejections[name]
        if self._exists(path):
            raise ItemExistsError(path)
        uuid = self._new_uuid(path)
        self.documents[path] = {
            "content": content,
            "size": size,
            "owner": owner,
            "group_hint": group_hint,
            "mime_type": mime_type,
            "uuid": uuid,
        }
        return uuid

    async def get_content(self, path: str) -> bytes:
        if path not in self.documents:
            raise PathNotFoundError(path)
        return self.documents[path]["content"]

    async def get_mail(self, path: str) -> CanonicalMail:
        if path not in self.mails:
            raise PathNotFoundError(path)
        return self.mails[path]

    async def list_documents(self, path: str) -> list[str]:
        return [p for p in self.documents if parent_path(p) == path]

    async def resolve_path_from_uuid(self, uuid: str) -> str:
        if uuid not in self.uuids:
            raise PathNotFoundError(uuid)
        return self.uuids[uuid]

    async def resolve_uuid_from_path(self, path: str) -> str:
        for uuid, known in self.uuids.items():
            if known == path:
                return uuid
        raise PathNotFoundError(path)


class InMemoryAccountStore(AccountStore):
    def __init__(self, *accounts: MailAccount) -> None:
        self.accounts = {a.id: a for a in accounts}
        self.updates: list[MailAccount] = []
        self.fail_updates = False

    async def load(self, account_id: int) -> MailAccount:
        return self.accounts[account_id]

    async def update(self, account: MailAccount) -> None:
        if self.fail_updates:
            raise RuntimeError("database unavailable")
        self.updates.append(account)
        self.accounts[account.id] = account


class RecordingTransport(Transport):
    def __init__(self, identity: str = "noreply@docmail.test") -> None:
        self._identity = identity
        self.sent: list[EmailMessage] = []
        self.error: Exception | None = None

    @property
    def default_identity(self) -> str:
        return self._identity

    async def send(self, message: EmailMessage) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append(message)


class RecordingAuditSink(AuditSink):
    def __init__(self) -> None:
        self.records: list[tuple[str, str, str, str, str]] = []
        self.error: Exception | None = None

    async def record(self, actor: str, action: str, object_id: str, object_path: str, detail: str) -> None:
        if self.error is not None:
            raise self.error
        self.records.append((actor, action, object_id, object_path, detail))


class FakeMailboxSession(MailboxSession):
    """Mailbox with programmable messages; records every flag change."""

    def __init__(
        self,
        messages: list[FetchedMessage] | None = None,
        protocol: MailProtocol = MailProtocol.IMAPS,
    ) -> None:
        self.protocol = protocol
        self.messages = {m.uid: m for m in messages or []}
        self.fetch_errors: dict[str, Exception] = {}
        self.seen_calls: list[tuple[str, bool]] = []
        self.deleted: list[str] = []
        self.closed_with: bool | None = None

    async def search_from_uid(self, start_uid: int) -> list[str]:
        uids = sorted(self.messages, key=int)
        found = [u for u in uids if int(u) >= start_uid]
        # IMAP "n:*" always returns the newest message
        if not found and uids:
            found = [uids[-1]]
        return found

    async def search_unseen(self) -> list[str]:
        return [uid for uid, m in self.messages.items() if not m.seen]

    async def fetch(self, uid: str) -> FetchedMessage:
        if uid in self.fetch_errors:
            raise self.fetch_errors[uid]
        return self.messages[uid]

    async def set_seen(self, uid: str, seen: bool) -> None:
        self.seen_calls.append((uid, seen))

    async def set_deleted(self, uid: str) -> None:
        self.deleted.append(uid)

    async def close(self, expunge: bool) -> None:
        self.closed_with = expunge


class FakeConnector:
    def __init__(self, session: FakeMailboxSession) -> None:
        self.session = session

    @asynccontextmanager
    async def open(self, account: MailAccount, *, expunge: bool | None = None) -> AsyncIterator[MailboxSession]:
        try:
            yield self.session
        finally:
            await self.session.close(account.mark_deleted if expunge is None else expunge)


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


def make_account(**overrides) -> MailAccount:
    defaults = {
        "id": 1,
        "owner": "bob",
        "protocol": MailProtocol.IMAPS,
        "host": "imap.test.com",
        "username": "bob",
        "password": "secret",
    }
    defaults.update(overrides)
    return MailAccount(**defaults)


def make_fetched(uid: str, raw_bytes: bytes, **overrides) -> FetchedMessage:
    defaults = {
        "seen": False,
        "size": len(raw_bytes),
        "internal_date": datetime(2024, 3, 5, 10, 30, tzinfo=UTC),
    }
    defaults.update(overrides)
    return FetchedMessage(uid=uid, raw_bytes=raw_bytes, **defaults)


def make_mail(**overrides) -> CanonicalMail:
    now = datetime(2024, 3, 5, 10, 30, tzinfo=UTC)
    defaults = {
        "from_address": "sender@example.com",
        "to": ["recipient@example.com"],
        "subject": "Quarterly report",
        "content": "Please find the report attached.",
        "received_date": now,
        "sent_date": now,
    }
    defaults.update(overrides)
    return CanonicalMail(**defaults)


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def mime_types() -> MimeTypeTable:
    return StdlibMimeTypeTable()


@pytest.fixture
def engine_config() -> MailEngineConfig:
    return MailEngineConfig(
        application_url="https://dms.example.com/docmail/",
        mailer_name="docmail-test",
        message_id_prefix="dm",
        smtp=SmtpConfig(host="smtp.test.com", default_from="noreply@docmail.test"),
        s3=S3Config(bucket="test-bucket", prefix="repo", max_file_size_bytes=1024),
    )


@pytest.fixture
def s3_config(engine_config: MailEngineConfig) -> S3Config:
    return engine_config.s3


@pytest.fixture
def plain_eml_bytes() -> bytes:
    return _build_plain_email()


@pytest.fixture
def multipart_eml_bytes() -> bytes:
    return _build_multipart_email(
        attachments=[
            ("report.pdf", "application/pdf", b"%PDF-1.4 fake pdf content"),
            ("data.csv", "text/csv", b"col1,col2\na,b\n"),
        ],
    )
