"""Data models shared by every stage of the mail engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, SecretStr

NO_SUBJECT = "(Message without subject)"
NO_BODY = "(Message without body)"


class MailProtocol(str, Enum):
    """Protocol tag of a mail account."""

    IMAP = "imap"
    IMAPS = "imaps"
    POP3 = "pop3"
    POP3S = "pop3s"

    @property
    def uses_ssl(self) -> bool:
        return self in (MailProtocol.IMAPS, MailProtocol.POP3S)

    @property
    def is_cursor_capable(self) -> bool:
        """IMAP UIDs are monotonic per folder; POP3 UIDLs are opaque tokens."""
        return self in (MailProtocol.IMAP, MailProtocol.IMAPS)


class MailMimeType(str, Enum):
    """Content type of a canonical mail body."""

    TEXT = "text/plain"
    HTML = "text/html"
    UNDEFINED = "undefined"


class FilterField(str, Enum):
    FROM = "from"
    TO = "to"
    SUBJECT = "subject"
    CONTENT = "content"


class FilterOperation(str, Enum):
    CONTAINS = "contains"
    EQUALS = "equals"


class MailFilterRule(BaseModel):
    """One predicate of a routing filter.

    ``field`` and ``operation`` stay plain strings so that values written by
    older configuration tools still load; unknown values are ignored by the
    filter engine.
    """

    field: str = Field(description="One of from, to, subject, content")
    operation: str = Field(description="One of contains, equals")
    value: str = Field(description="Value compared case-insensitively")
    active: bool = Field(default=True, description="Inactive rules are skipped")


class MailFilter(BaseModel):
    """Routes matching mail into one destination folder."""

    path: str = Field(description="Destination folder path in the repository")
    grouping: bool = Field(
        default=False,
        description="Nest imported mail under year/month/day subfolders",
    )
    active: bool = Field(default=True, description="Inactive filters never match")
    rules: list[MailFilterRule] = Field(default_factory=list)


class MailImportError(BaseModel):
    """Ledger entry for a message that failed to import."""

    uid: str = Field(description="Source message UID")
    subject: str = Field(default="", description="Sanitized subject of the source message")
    error: str = Field(description="Error message and stack trace")
    imported_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class MailAccount(BaseModel):
    """A remote mailbox polled into the repository on behalf of one user."""

    id: int = Field(description="Account identifier in the account store")
    owner: str = Field(description="Repository user that owns imported mail")
    protocol: MailProtocol = Field(default=MailProtocol.IMAPS)
    host: str = Field(description="Mail server hostname")
    port: int | None = Field(default=None, description="Server port, protocol default if unset")
    username: str = Field(description="Login username")
    password: SecretStr = Field(description="Login password")
    folder: str = Field(default="INBOX", description="Source folder to poll")
    last_uid: int = Field(default=0, description="Highest committed IMAP UID")
    mark_seen: bool = Field(default=True)
    mark_deleted: bool = Field(default=False)
    active: bool = Field(default=True)
    filters: list[MailFilter] = Field(default_factory=list)
    import_errors: list[MailImportError] = Field(default_factory=list)

    def has_error_for(self, uid: str) -> bool:
        return any(err.uid == uid for err in self.import_errors)


class CanonicalMail(BaseModel):
    """Protocol-independent representation of one imported message."""

    model_config = ConfigDict(frozen=True)

    from_address: str = ""
    to: list[str] = Field(default_factory=list)
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)
    subject: str = NO_SUBJECT
    content: str = NO_BODY
    mime_type: MailMimeType = MailMimeType.TEXT
    size: int = 0
    received_date: datetime
    sent_date: datetime
    path: str | None = None
    uuid: str | None = None

    def with_path(self, path: str) -> CanonicalMail:
        return self.model_copy(update={"path": path})


class AuditRecord(BaseModel):
    """A single user-activity entry emitted by the dispatcher."""

    actor: str
    action: str
    object_id: str = ""
    object_path: str = ""
    detail: str = ""
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


@dataclass
class ParsedAttachment:
    """A single attachment extracted from a message."""

    filename: str
    payload: bytes


@dataclass
class ParsedMessage:
    """Parser output: the canonical mail plus the attachments to store."""

    mail: CanonicalMail
    attachments: list[ParsedAttachment] = field(default_factory=list)


@dataclass
class FetchedMessage:
    """Raw message data fetched from a mailbox."""

    uid: str
    raw_bytes: bytes
    seen: bool = False
    size: int | None = None
    internal_date: datetime | None = None
