"""Collaborator interfaces consumed by the mail engine.

The engine never owns repository nodes, account persistence, the mail
transport or the audit trail; it talks to them only through these ABCs.
Concrete adapters live in :mod:`docmail.s3`, :mod:`docmail.store`,
:mod:`docmail.smtp`, :mod:`docmail.audit` and :mod:`docmail.mimetypes`.
"""

from __future__ import annotations

import abc
from email.message import EmailMessage

from .models import CanonicalMail, MailAccount


class Repository(abc.ABC):
    """Folder, mail and document nodes addressed by path or UUID."""

    @abc.abstractmethod
    async def has_node(self, path: str) -> bool: ...

    @abc.abstractmethod
    async def create_folder(self, path: str) -> str:
        """Create a folder and return its UUID.

        Raises :class:`~docmail.exceptions.ItemExistsError` if the path is taken.
        """

    @abc.abstractmethod
    async def create_mail(self, path: str, mail: CanonicalMail, owner: str) -> str:
        """Create a mail node at *path* and return its UUID."""

    @abc.abstractmethod
    async def create_document(
        self,
        path: str,
        content: bytes,
        size: int,
        owner: str,
        group_hint: str | None = None,
        mime_type: str = "application/octet-stream",
    ) -> str:
        """Store a document and return its UUID.

        Raises a :class:`~docmail.exceptions.RepositoryPolicyRejection`
        subclass when size, quota, type or virus checks refuse the content.
        """

    @abc.abstractmethod
    async def get_content(self, path: str) -> bytes: ...

    @abc.abstractmethod
    async def get_mail(self, path: str) -> CanonicalMail: ...

    @abc.abstractmethod
    async def list_documents(self, path: str) -> list[str]:
        """Return the paths of documents stored directly under *path*."""

    @abc.abstractmethod
    async def resolve_path_from_uuid(self, uuid: str) -> str: ...

    @abc.abstractmethod
    async def resolve_uuid_from_path(self, path: str) -> str: ...


class AccountStore(abc.ABC):
    """Persistence of mail accounts, their filters and error ledgers."""

    @abc.abstractmethod
    async def load(self, account_id: int) -> MailAccount: ...

    @abc.abstractmethod
    async def update(self, account: MailAccount) -> None:
        """Persist cursor and error ledger of *account*."""


class Transport(abc.ABC):
    """Synchronous-semantics mail submission, no retry."""

    @property
    @abc.abstractmethod
    def default_identity(self) -> str:
        """From address used when the caller's address is not honored."""

    @abc.abstractmethod
    async def send(self, message: EmailMessage) -> None: ...


class MimeTypeTable(abc.ABC):
    @abc.abstractmethod
    def lookup(self, filename: str) -> str:
        """Return the content type for *filename* based on its extension."""


class AuditSink(abc.ABC):
    """Append-only user activity log."""

    @abc.abstractmethod
    async def record(
        self,
        actor: str,
        action: str,
        object_id: str,
        object_path: str,
        detail: str,
    ) -> None: ...
