"""Stores message attachments as documents under their mail node."""

from __future__ import annotations

import structlog

from .exceptions import RepositoryPolicyRejection
from .interfaces import MimeTypeTable, Repository
from .models import CanonicalMail, ParsedAttachment
from .text import decode_mime_words, escape_name, node_name, split_extension

logger = structlog.get_logger()


def candidate_name(filename: str, attempt: int) -> str:
    """``report.pdf`` becomes ``report (2).pdf`` for attempt 2; attempt 0 is unchanged."""
    if attempt == 0:
        return filename
    base, ext = split_extension(filename)
    if ext:
        return f"{base} ({attempt}).{ext}"
    return f"{base} ({attempt})"


class AttachmentImporter:
    def __init__(self, repository: Repository, mime_types: MimeTypeTable) -> None:
        self._repository = repository
        self._mime_types = mime_types

    async def import_attachments(
        self,
        mail: CanonicalMail,
        attachments: list[ParsedAttachment],
        owner: str,
    ) -> list[str]:
        """Create one document per attachment below ``mail.path``.

        Returns the paths of the stored documents; attachments refused by a
        repository policy are logged and skipped.
        """
        if mail.path is None:
            raise ValueError("mail must be stored before its attachments")

        stored: list[str] = []
        for attachment in attachments:
            original = decode_mime_words(attachment.filename)
            filename = escape_name(original) or "attachment"
            path = await self._free_path(mail.path, filename)
            group_hint = mail.subject if "/" in original else None

            try:
                await self._repository.create_document(
                    path,
                    attachment.payload,
                    len(attachment.payload),
                    owner,
                    group_hint=group_hint,
                    mime_type=self._mime_types.lookup(node_name(path)),
                )
            except RepositoryPolicyRejection as exc:
                logger.warning(
                    "attachment_rejected",
                    path=path,
                    reason=type(exc).__name__,
                    error=str(exc),
                )
                continue

            logger.debug("attachment_stored", path=path, size=len(attachment.payload))
            stored.append(path)
        return stored

    async def _free_path(self, parent: str, filename: str) -> str:
        attempt = 0
        while True:
            path = f"{parent}/{candidate_name(filename, attempt)}"
            if not await self._repository.has_node(path):
                return path
            attempt += 1
