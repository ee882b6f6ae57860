"""Dispatcher: sends composed messages and records user activity."""

from __future__ import annotations

from email.message import EmailMessage

import structlog

from .addresses import parse_mail_list
from .composer import MessageComposer
from .interfaces import AuditSink, Repository, Transport
from .text import is_path

logger = structlog.get_logger()

SEND_MAIL_LINK = "SEND_MAIL_LINK"
SEND_MAIL_ATTACHMENT = "SEND_MAIL_ATTACHMENT"


class Dispatcher:
    def __init__(
        self,
        composer: MessageComposer,
        transport: Transport,
        repository: Repository,
        audit: AuditSink,
    ) -> None:
        self._composer = composer
        self._transport = transport
        self._repository = repository
        self._audit = audit

    async def send(
        self,
        to: list[str],
        subject: str,
        text: str,
        *,
        actor: str,
        from_address: str | None = None,
        reply_to: list[str] | None = None,
        cc: list[str] | None = None,
        bcc: list[str] | None = None,
        documents: list[str] | None = None,
    ) -> EmailMessage:
        """Compose and send a message with optional repository documents.

        Documents are given by path or UUID.  Nothing is sent when
        composition fails; the transport is called exactly once.
        """
        msg = await self._composer.compose(
            to,
            subject,
            text,
            from_address=from_address,
            reply_to=reply_to,
            cc=cc,
            bcc=bcc,
            documents=documents,
        )
        await self._transport.send(msg)
        logger.info("mail_sent", actor=actor, to=to, documents=len(documents or []))

        try:
            self._composer.rewrite_body(msg, text)
        except Exception:
            logger.exception("sent_message_rewrite_failed", subject=subject)

        await self._record_send(actor, to, documents or [])
        return msg

    async def send_message(
        self,
        to: str | list[str],
        subject: str,
        content: str,
        *,
        actor: str = "system",
        from_address: str | None = None,
    ) -> EmailMessage:
        """Send a plain notification without documents.

        A string *to* may list several comma-separated addresses; invalid
        entries are dropped.
        """
        recipients = parse_mail_list(to) if isinstance(to, str) else list(to)
        return await self.send(recipients, subject, content, actor=actor, from_address=from_address)

    async def forward(
        self,
        mail_id: str,
        to: list[str],
        message: str,
        *,
        actor: str,
        from_address: str | None = None,
    ) -> EmailMessage:
        """Forward a stored mail, given by path or UUID."""
        path = mail_id if is_path(mail_id) else await self._repository.resolve_path_from_uuid(mail_id)
        mail = await self._repository.get_mail(path)
        if mail.path is None:
            mail = mail.with_path(path)

        msg = await self._composer.compose_forward(mail, to, message, from_address=from_address)
        await self._transport.send(msg)
        logger.info("mail_forwarded", actor=actor, path=path, to=to)
        return msg

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    async def _record_send(self, actor: str, to: list[str], documents: list[str]) -> None:
        detail = ", ".join(to)
        try:
            if not documents:
                await self._audit.record(actor, SEND_MAIL_LINK, "", "", detail)
                return
            for document in documents:
                if is_path(document):
                    path, uuid = document, await self._repository.resolve_uuid_from_path(document)
                else:
                    path, uuid = await self._repository.resolve_path_from_uuid(document), document
                await self._audit.record(actor, SEND_MAIL_ATTACHMENT, uuid, path, detail)
        except Exception:
            # the mail has already left
            logger.exception("send_audit_failed", actor=actor, to=to)
