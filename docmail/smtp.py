"""SMTP transport built on :mod:`smtplib`.

Blocking SMTP calls run through ``asyncio.to_thread()``.  A message is
handed to the server exactly once; there is no retry.
"""

from __future__ import annotations

import asyncio
import smtplib
from email.message import EmailMessage

import structlog

from .config import SmtpConfig
from .interfaces import Transport

logger = structlog.get_logger()


class SmtpTransport(Transport):
    def __init__(self, config: SmtpConfig) -> None:
        self._config = config

    @property
    def default_identity(self) -> str:
        return self._config.default_from

    async def send(self, message: EmailMessage) -> None:
        await asyncio.to_thread(self._send_sync, message)
        logger.info(
            "smtp_message_sent",
            host=self._config.host,
            message_id=message.get("X-Message-Id"),
        )

    def _send_sync(self, message: EmailMessage) -> None:
        if self._config.use_ssl:
            client = smtplib.SMTP_SSL(self._config.host, self._config.port, timeout=self._config.timeout_seconds)
        else:
            client = smtplib.SMTP(self._config.host, self._config.port, timeout=self._config.timeout_seconds)

        with client:
            if self._config.starttls and not self._config.use_ssl:
                client.starttls()
            if self._config.username:
                password = self._config.password.get_secret_value() if self._config.password else ""
                client.login(self._config.username, password)
            client.send_message(message)
