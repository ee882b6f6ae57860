"""MIME parser: raw RFC 822 bytes to canonical mail.

The message's part tree is first converted into three tagged variants
(:class:`Leaf`, :class:`Composite`, :class:`Nested`) and then reduced to a
single body by :meth:`MessageParser._visit`.  Body selection rules:

* ``multipart/alternative`` prefers a ``text/html`` child, otherwise the
  last child that yields text wins.
* Any other ``multipart/*`` and ``message/rfc822`` yield the first child
  (depth first) that has text.
* Leaves are decoded with their declared charset, or with a detected one
  when the charset is missing or unknown.
"""

from __future__ import annotations

import email
import email.parser
import email.policy
import email.utils
import locale
from dataclasses import dataclass
from datetime import UTC, datetime
from email.message import Message
from typing import Union

import chardet
import structlog

from .addresses import format_address_list
from .exceptions import ParseFailure
from .models import (
    NO_BODY,
    NO_SUBJECT,
    CanonicalMail,
    MailMimeType,
    ParsedAttachment,
    ParsedMessage,
)
from .text import decode_mime_words, sanitize

logger = structlog.get_logger()


@dataclass(frozen=True)
class Leaf:
    content_type: str
    payload: bytes | str
    charset: str | None = None
    is_attachment: bool = False


@dataclass(frozen=True)
class Composite:
    subtype: str
    children: tuple[PartNode, ...]


@dataclass(frozen=True)
class Nested:
    message: PartNode


PartNode = Union[Leaf, Composite, Nested]


@dataclass(frozen=True)
class BodyText:
    mime_type: MailMimeType
    text: str


def build_tree(part: Message) -> PartNode:
    """Convert a stdlib message part into the tagged part tree."""
    if part.get_content_type() == "message/rfc822" and part.is_multipart():
        return Nested(build_tree(part.get_payload(0)))
    if part.is_multipart():
        return Composite(
            subtype=part.get_content_subtype(),
            children=tuple(build_tree(child) for child in part.get_payload()),
        )
    return Leaf(
        content_type=part.get_content_type(),
        payload=part.get_payload(decode=True) or b"",
        charset=part.get_content_charset(),
        is_attachment=part.get_content_disposition() == "attachment",
    )


def decode_unknown(data: bytes) -> str:
    """Decode bytes of unknown charset: detection first, platform default last."""
    encoding = chardet.detect(data).get("encoding")
    if encoding:
        try:
            return data.decode(encoding, errors="replace")
        except LookupError:
            logger.debug("detected_charset_unusable", encoding=encoding)
    return data.decode(locale.getpreferredencoding(False), errors="replace")


def extract_subject(raw_bytes: bytes) -> str:
    """Header-only subject lookup, usable even when the body is broken."""
    try:
        headers = email.parser.BytesHeaderParser(policy=email.policy.default).parsebytes(raw_bytes)
        return sanitize(str(headers.get("Subject", "")))
    except Exception:
        logger.debug("subject_extraction_failed", exc_info=True)
        return ""


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = email.utils.parsedate_to_datetime(str(value))
    except (TypeError, ValueError, IndexError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _part_bytes(part: Message) -> bytes:
    if part.get_content_type() == "message/rfc822" and part.is_multipart():
        return part.get_payload(0).as_bytes()
    return part.get_payload(decode=True) or b""


class MessageParser:
    """Stateless parser turning raw RFC 822 bytes into a :class:`ParsedMessage`."""

    def parse(
        self,
        raw_bytes: bytes,
        *,
        received_date: datetime | None = None,
        size: int | None = None,
    ) -> ParsedMessage:
        try:
            msg = email.message_from_bytes(raw_bytes, policy=email.policy.default)
            return ParsedMessage(
                mail=self._to_mail(msg, raw_bytes, received_date, size),
                attachments=self.attachments(msg),
            )
        except ParseFailure:
            raise
        except Exception as exc:
            raise ParseFailure(f"Cannot parse message: {exc}") from exc

    def _to_mail(
        self,
        msg: Message,
        raw_bytes: bytes,
        received_date: datetime | None,
        size: int | None,
    ) -> CanonicalMail:
        body = self._visit(build_tree(msg)) or BodyText(MailMimeType.TEXT, NO_BODY)
        subject = sanitize(str(msg.get("Subject", "")))
        senders = format_address_list([str(v) for v in msg.get_all("From", [])])
        now = datetime.now(UTC)

        return CanonicalMail(
            from_address=sanitize(senders[0]) if senders else "",
            to=self._recipients(msg, "To"),
            cc=self._recipients(msg, "Cc"),
            bcc=self._recipients(msg, "Bcc"),
            subject=subject or NO_SUBJECT,
            content=sanitize(body.text),
            mime_type=body.mime_type,
            size=size if size is not None and size >= 0 else len(raw_bytes),
            received_date=received_date or self._received_header_date(msg) or now,
            sent_date=_parse_date(msg.get("Date")) or now,
        )

    def _recipients(self, msg: Message, header: str) -> list[str]:
        return [sanitize(a) for a in format_address_list([str(v) for v in msg.get_all(header, [])])]

    def _received_header_date(self, msg: Message) -> datetime | None:
        received = msg.get_all("Received", [])
        if not received:
            return None
        return _parse_date(str(received[0]).rpartition(";")[2].strip())

    # ------------------------------------------------------------------
    # Body reduction
    # ------------------------------------------------------------------

    def _visit(self, node: PartNode) -> BodyText | None:
        if isinstance(node, Leaf):
            return self._leaf_text(node)
        if isinstance(node, Nested):
            return self._visit(node.message)
        if node.subtype == "alternative":
            return self._alternative_text(node)
        return next((text for text in map(self._visit, node.children) if text is not None), None)

    def _alternative_text(self, node: Composite) -> BodyText | None:
        html = next(
            (c for c in node.children if isinstance(c, Leaf) and c.content_type == "text/html"),
            None,
        )
        if html is not None:
            text = self._visit(html)
            if text is not None:
                return text
        texts = [text for text in map(self._visit, node.children) if text is not None]
        return texts[-1] if texts else None

    def _leaf_text(self, leaf: Leaf) -> BodyText | None:
        if leaf.is_attachment:
            return None
        text = self._decode(leaf)
        if leaf.content_type == "text/html":
            return BodyText(MailMimeType.HTML, text)
        if leaf.content_type == "text/plain":
            return BodyText(MailMimeType.TEXT, text)
        if "<html>" in text.lower():
            return BodyText(MailMimeType.HTML, text)
        return BodyText(MailMimeType.TEXT, text)

    def _decode(self, leaf: Leaf) -> str:
        if isinstance(leaf.payload, str):
            return leaf.payload
        if leaf.charset:
            try:
                return leaf.payload.decode(leaf.charset, errors="replace")
            except LookupError:
                logger.debug("unknown_declared_charset", charset=leaf.charset)
        return decode_unknown(leaf.payload)

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    def attachments(self, msg: Message) -> list[ParsedAttachment]:
        """Named parts of a multipart message, the primary body part excluded."""
        if not msg.is_multipart() or msg.get_content_maintype() != "multipart":
            return []

        attachments: list[ParsedAttachment] = []
        for part in msg.get_payload()[1:]:
            filename = part.get_filename()
            if not filename:
                continue
            attachments.append(
                ParsedAttachment(
                    filename=decode_mime_words(filename),
                    payload=_part_bytes(part),
                )
            )
        return attachments
