"""Builds outbound messages that carry repository content."""

from __future__ import annotations

import email.utils
import re
import uuid
from email.message import EmailMessage

import structlog

from .config import MailEngineConfig
from .exceptions import DispatchError, MailEngineError
from .interfaces import MimeTypeTable, Repository
from .models import CanonicalMail, MailMimeType
from .text import is_path, node_name

logger = structlog.get_logger()

HTML_HEADER = (
    '<!DOCTYPE html PUBLIC "-//W3C//DTD HTML 4.01 Transitional//EN">\n'
    "<html>\n<head>\n"
    '<meta content="text/html;charset=UTF-8" http-equiv="Content-Type"/>\n'
    "</head>\n<body>\n"
)
HTML_FOOTER = "\n</body>\n</html>"

FORWARD_SEPARATOR = "---------- Forwarded message ----------"

# Links produced by the repository web client open nodes in-app.
_INTERNAL_LINK = re.compile(r"""onclick="javascript:parent\.jsOpenPathByUuid\('(.*?)'\);" href="#\"""")


def wrap_html(text: str) -> str:
    return f"{HTML_HEADER}{text}{HTML_FOOTER}"


def absolutize_links(body: str, application_url: str) -> str:
    """Rewrite in-app node links into ``<application_url>?uuid=<uuid>`` links."""
    return _INTERNAL_LINK.sub(lambda m: f'href="{application_url}?uuid={m.group(1)}"', body)


def _join(addresses: list[str] | None) -> str:
    return ", ".join(a.strip() for a in addresses or [] if a and a.strip())


class MessageComposer:
    """Creates ``multipart/mixed`` messages: an inline body plus documents."""

    def __init__(
        self,
        config: MailEngineConfig,
        repository: Repository,
        mime_types: MimeTypeTable,
        default_from: str,
    ) -> None:
        self._config = config
        self._repository = repository
        self._mime_types = mime_types
        self._default_from = default_from

    async def compose(
        self,
        to: list[str],
        subject: str,
        text: str,
        *,
        from_address: str | None = None,
        reply_to: list[str] | None = None,
        cc: list[str] | None = None,
        bcc: list[str] | None = None,
        documents: list[str] | None = None,
    ) -> EmailMessage:
        """Compose a message; any failure raises DispatchError."""
        try:
            msg = self._new_message(to, subject, from_address)
            if reply_to:
                msg["Reply-To"] = _join(reply_to)
            if cc:
                msg["Cc"] = _join(cc)
            if bcc:
                msg["Bcc"] = _join(bcc)

            body = wrap_html(absolutize_links(text, self._config.application_url))
            msg.set_content(body, subtype="html", charset="utf-8", disposition="inline")
            msg.make_mixed()

            for document in documents or []:
                path = document if is_path(document) else await self._repository.resolve_path_from_uuid(document)
                await self._attach(msg, path)
        except DispatchError:
            raise
        except (MailEngineError, ValueError, TypeError) as exc:
            raise DispatchError(f"Cannot compose message {subject!r}: {exc}") from exc

        logger.debug("message_composed", to=to, documents=len(documents or []))
        return msg

    async def compose_forward(
        self,
        mail: CanonicalMail,
        to: list[str],
        message: str,
        *,
        from_address: str | None = None,
    ) -> EmailMessage:
        """Compose a forward of a stored mail, its attachments included."""
        try:
            msg = self._new_message(to or mail.to, f"Fwd: {mail.subject}", from_address)

            if mail.mime_type is MailMimeType.TEXT:
                content = f"{message}\n\n{FORWARD_SEPARATOR}\n\n{mail.content}"
                msg.set_content(content, subtype="plain", charset="utf-8", disposition="inline")
            elif mail.mime_type is MailMimeType.HTML:
                content = f"{message}<br/><br/>{FORWARD_SEPARATOR}<br/><br/>{mail.content}"
                msg.set_content(wrap_html(content), subtype="html", charset="utf-8", disposition="inline")
            else:
                logger.warning("forwarded_mail_without_mime_type", path=mail.path)
                msg.set_content(mail.content, subtype="plain", charset="utf-8", disposition="inline")
            msg.make_mixed()

            if mail.path:
                for path in await self._repository.list_documents(mail.path):
                    await self._attach(msg, path)
        except DispatchError:
            raise
        except (MailEngineError, ValueError, TypeError) as exc:
            raise DispatchError(f"Cannot compose forward of {mail.path}: {exc}") from exc
        return msg

    def rewrite_body(self, msg: EmailMessage, text: str) -> None:
        """Replace the primary body part with the wrapped, unrewritten *text*."""
        body = next(msg.iter_parts())
        body.set_content(wrap_html(text), subtype="html", charset="utf-8", disposition="inline")

    def sender(self, from_address: str | None) -> str:
        if from_address and self._config.send_mail_from_user:
            return from_address
        return self._default_from

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_message(self, to: list[str], subject: str, from_address: str | None) -> EmailMessage:
        recipients = _join(to)
        if not recipients:
            raise DispatchError("No recipients given")

        msg = EmailMessage()
        msg["From"] = self.sender(from_address)
        msg["To"] = recipients
        msg["Subject"] = subject
        msg["Date"] = email.utils.formatdate(localtime=True)
        msg["X-Mailer"] = self._config.mailer_name
        msg["X-Message-Id"] = f"{self._config.message_id_prefix}-{uuid.uuid4()}"
        return msg

    async def _attach(self, msg: EmailMessage, path: str) -> None:
        name = node_name(path)
        content = await self._repository.get_content(path)
        maintype, _, subtype = self._mime_types.lookup(name.lower()).partition("/")
        if maintype in ("multipart", "message") or not subtype:
            # container types cannot carry raw bytes
            maintype, subtype = "application", "octet-stream"
        msg.add_attachment(
            content,
            maintype=maintype,
            subtype=subtype,
            filename=name,
        )
