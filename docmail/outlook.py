"""Outlook ``.msg`` compound documents to canonical mail."""

from __future__ import annotations

import email.utils
from datetime import UTC, datetime

import extract_msg
import structlog

from .addresses import format_address, format_address_list
from .exceptions import ParseFailure
from .models import (
    NO_BODY,
    NO_SUBJECT,
    CanonicalMail,
    MailMimeType,
    ParsedAttachment,
    ParsedMessage,
)
from .parser import decode_unknown
from .text import sanitize

logger = structlog.get_logger()

# MAPI PR_RECIPIENT_TYPE values
_RECIPIENT_TO = 1
_RECIPIENT_CC = 2
_RECIPIENT_BCC = 3


def _as_datetime(value: object) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = email.utils.parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class OutlookParser:
    """Parses uploaded ``.msg`` files with :mod:`extract_msg`."""

    def parse(self, data: bytes) -> ParsedMessage:
        try:
            msg = extract_msg.Message(data)
        except Exception as exc:
            raise ParseFailure(f"Cannot open Outlook message: {exc}") from exc

        try:
            return ParsedMessage(mail=self._to_mail(msg), attachments=self._attachments(msg))
        except ParseFailure:
            raise
        except Exception as exc:
            raise ParseFailure(f"Cannot parse Outlook message: {exc}") from exc
        finally:
            msg.close()

    def _to_mail(self, msg: extract_msg.Message) -> CanonicalMail:
        mime_type, content = self._body(msg)
        now = datetime.now(UTC)
        received = _as_datetime(msg.date)
        sent = _as_datetime(getattr(msg, "creationTime", None)) or received or now
        subject = sanitize(msg.subject or "")
        senders = format_address_list([msg.sender]) if msg.sender else []

        return CanonicalMail(
            from_address=sanitize(senders[0]) if senders else "",
            to=self._recipients(msg, _RECIPIENT_TO),
            cc=self._recipients(msg, _RECIPIENT_CC),
            bcc=self._recipients(msg, _RECIPIENT_BCC),
            subject=subject or NO_SUBJECT,
            content=sanitize(content),
            mime_type=mime_type,
            size=len(content),
            received_date=received or now,
            sent_date=sent,
        )

    def _body(self, msg: extract_msg.Message) -> tuple[MailMimeType, str]:
        html = msg.htmlBody
        if html:
            text = html if isinstance(html, str) else decode_unknown(html)
            return MailMimeType.HTML, text
        if msg.body:
            return MailMimeType.TEXT, msg.body
        return MailMimeType.UNDEFINED, NO_BODY

    def _recipients(self, msg: extract_msg.Message, kind: int) -> list[str]:
        addresses = []
        for recipient in msg.recipients:
            if recipient.type is None or int(recipient.type) != kind or not recipient.email:
                continue
            addresses.append(sanitize(format_address(recipient.name, recipient.email)))
        return addresses

    def _attachments(self, msg: extract_msg.Message) -> list[ParsedAttachment]:
        attachments: list[ParsedAttachment] = []
        for attachment in msg.attachments:
            filename = attachment.longFilename or attachment.shortFilename
            data = attachment.data
            if not filename or not isinstance(data, bytes):
                # embedded .msg attachments carry a Message, not bytes
                logger.debug("outlook_attachment_skipped", filename=filename)
                continue
            attachments.append(ParsedAttachment(filename=filename, payload=data))
        return attachments
