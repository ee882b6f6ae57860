"""Mailbox sessions over IMAP and POP3.

Both protocols are served by the blocking stdlib clients (``imaplib``,
``poplib``); every call is wrapped with ``asyncio.to_thread()`` so the
engine never blocks the event loop.
"""

from __future__ import annotations

import abc
import asyncio
import imaplib
import poplib
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

import structlog

from .exceptions import ConnectionFailure, MailEngineError
from .models import FetchedMessage, MailAccount, MailProtocol

logger = structlog.get_logger()

MAIL_STORE_SEPARATORS = ("/", ".")

_DEFAULT_PORTS = {
    MailProtocol.IMAP: 143,
    MailProtocol.IMAPS: 993,
    MailProtocol.POP3: 110,
    MailProtocol.POP3S: 995,
}

_LIST_RESPONSE = re.compile(rb'\((?P<flags>[^)]*)\) (?P<delim>"[^"]*"|NIL) (?P<name>.+)')
_FLAGS = re.compile(rb"FLAGS \(([^)]*)\)")
_SIZE = re.compile(rb"RFC822\.SIZE (\d+)")
_INTERNALDATE = re.compile(rb'INTERNALDATE "(?P<date>[^"]+)"')


def fix_folder_separator(folder: str, native_separator: str | None) -> str:
    """Translate a configured folder path to the server's hierarchy separator.

    Either ``/`` or ``.`` is accepted in configuration (``/`` wins when both
    appear).  Single-segment names are returned unchanged.
    """
    separator = next((s for s in MAIL_STORE_SEPARATORS if s in folder), None)
    if separator is None or not native_separator:
        return folder
    if len(folder.split(separator)) <= 1:
        return folder
    return folder.replace(separator, native_separator)


def _quote(name: str) -> str:
    if name.startswith('"') or not re.search(r'[\s"\\()]', name):
        return name
    escaped = name.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _parse_internaldate(value: bytes) -> datetime | None:
    """Server receive time, keeping the server's own UTC offset."""
    try:
        return datetime.strptime(value.decode("ascii").strip(), "%d-%b-%Y %H:%M:%S %z")
    except (UnicodeDecodeError, ValueError):
        logger.warning("imap_internaldate_unparseable", value=value)
        return None


class MailboxSession(abc.ABC):
    """An open, selected folder on a remote mail server."""

    protocol: MailProtocol

    @property
    def cursor_capable(self) -> bool:
        return self.protocol.is_cursor_capable

    @abc.abstractmethod
    async def search_from_uid(self, start_uid: int) -> list[str]:
        """Return UIDs from *start_uid* to the newest message (server view)."""

    @abc.abstractmethod
    async def search_unseen(self) -> list[str]:
        """Return identifiers of every message lacking the seen flag."""

    @abc.abstractmethod
    async def fetch(self, uid: str) -> FetchedMessage: ...

    @abc.abstractmethod
    async def set_seen(self, uid: str, seen: bool) -> None: ...

    @abc.abstractmethod
    async def set_deleted(self, uid: str) -> None: ...

    @abc.abstractmethod
    async def close(self, expunge: bool) -> None:
        """Close the folder and log out.  Failures raise ConnectionFailure."""


class ImapSession(MailboxSession):
    def __init__(self, conn: imaplib.IMAP4, protocol: MailProtocol, folder: str) -> None:
        self._conn = conn
        self.protocol = protocol
        self.folder = folder
        self._closed = False

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search_from_uid(self, start_uid: int) -> list[str]:
        return await asyncio.to_thread(self._search_sync, f"UID {start_uid}:*")

    async def search_unseen(self) -> list[str]:
        return await asyncio.to_thread(self._search_sync, "UNSEEN")

    def _search_sync(self, criteria: str) -> list[str]:
        try:
            status, data = self._conn.uid("SEARCH", None, criteria)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise ConnectionFailure(f"IMAP search failed: {exc}") from exc
        if status != "OK":
            raise ConnectionFailure(f"IMAP search failed: {status} {data!r}")
        if not data or not data[0]:
            return []
        return [uid.decode() for uid in data[0].split()]

    # ------------------------------------------------------------------
    # Message retrieval
    # ------------------------------------------------------------------

    async def fetch(self, uid: str) -> FetchedMessage:
        return await asyncio.to_thread(self._fetch_sync, uid)

    def _fetch_sync(self, uid: str) -> FetchedMessage:
        status, meta = self._conn.uid("FETCH", uid, "(FLAGS INTERNALDATE RFC822.SIZE)")
        if status != "OK" or not meta or meta[0] is None:
            raise MailEngineError(f"IMAP FETCH of UID {uid} failed: {status}")
        header = meta[0][0] if isinstance(meta[0], tuple) else meta[0]

        flags_match = _FLAGS.search(header)
        flags = flags_match.group(1).split() if flags_match else []
        size_match = _SIZE.search(header)
        date_match = _INTERNALDATE.search(header)

        # BODY.PEEK leaves \Seen untouched; the flag policy decides it later.
        status, data = self._conn.uid("FETCH", uid, "(BODY.PEEK[])")
        if status != "OK" or not data or not isinstance(data[0], tuple):
            raise MailEngineError(f"IMAP FETCH of UID {uid} returned no body")

        return FetchedMessage(
            uid=uid,
            raw_bytes=data[0][1],
            seen=b"\\Seen" in flags,
            size=int(size_match.group(1)) if size_match else None,
            internal_date=_parse_internaldate(date_match.group("date")) if date_match else None,
        )

    # ------------------------------------------------------------------
    # Flags
    # ------------------------------------------------------------------

    async def set_seen(self, uid: str, seen: bool) -> None:
        await asyncio.to_thread(self._store_sync, uid, "+FLAGS" if seen else "-FLAGS", "(\\Seen)")

    async def set_deleted(self, uid: str) -> None:
        await asyncio.to_thread(self._store_sync, uid, "+FLAGS", "(\\Deleted)")

    def _store_sync(self, uid: str, command: str, flags: str) -> None:
        status, data = self._conn.uid("STORE", uid, command, flags)
        if status != "OK":
            raise MailEngineError(f"IMAP STORE {command} {flags} on UID {uid} failed: {data!r}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self, expunge: bool) -> None:
        if self._closed:
            return
        self._closed = True
        await asyncio.to_thread(self._close_sync, expunge)
        logger.info("mailbox_closed", protocol=self.protocol.value, expunge=expunge)

    def _close_sync(self, expunge: bool) -> None:
        try:
            try:
                # CLOSE removes \Deleted messages; LOGOUT alone never does.
                if expunge:
                    self._conn.close()
            finally:
                self._conn.logout()
        except (imaplib.IMAP4.error, OSError) as exc:
            raise ConnectionFailure(f"IMAP close failed: {exc}") from exc


class Pop3Session(MailboxSession):
    """POP3 has a single mailbox, no flags and no UID ordering guarantee."""

    def __init__(self, conn: poplib.POP3, protocol: MailProtocol) -> None:
        self._conn = conn
        self.protocol = protocol
        self._numbers: dict[str, int] = {}
        self._closed = False

    async def search_from_uid(self, start_uid: int) -> list[str]:
        raise MailEngineError("POP3 has no UID cursor")

    async def search_unseen(self) -> list[str]:
        return await asyncio.to_thread(self._load_uidl_sync)

    def _load_uidl_sync(self) -> list[str]:
        try:
            _, listings, _ = self._conn.uidl()
        except (poplib.error_proto, OSError) as exc:
            raise ConnectionFailure(f"POP3 UIDL failed: {exc}") from exc
        self._numbers = {}
        for line in listings:
            number, _, uid = line.decode().partition(" ")
            self._numbers[uid.strip()] = int(number)
        return sorted(self._numbers, key=self._numbers.__getitem__)

    async def fetch(self, uid: str) -> FetchedMessage:
        return await asyncio.to_thread(self._fetch_sync, uid)

    def _fetch_sync(self, uid: str) -> FetchedMessage:
        if not self._numbers:
            self._load_uidl_sync()
        _, lines, octets = self._conn.retr(self._number(uid))
        return FetchedMessage(uid=uid, raw_bytes=b"\r\n".join(lines), size=octets)

    async def set_seen(self, uid: str, seen: bool) -> None:
        return None

    async def set_deleted(self, uid: str) -> None:
        await asyncio.to_thread(self._conn.dele, self._number(uid))

    def _number(self, uid: str) -> int:
        try:
            return self._numbers[uid]
        except KeyError:
            raise MailEngineError(f"POP3 message {uid} is no longer on the server") from None

    async def close(self, expunge: bool) -> None:
        if self._closed:
            return
        self._closed = True
        await asyncio.to_thread(self._close_sync, expunge)
        logger.info("mailbox_closed", protocol=self.protocol.value, expunge=expunge)

    def _close_sync(self, expunge: bool) -> None:
        try:
            try:
                # Deletions are applied on QUIT unless RSET undoes them.
                if not expunge:
                    self._conn.rset()
            finally:
                self._conn.quit()
        except (poplib.error_proto, OSError) as exc:
            raise ConnectionFailure(f"POP3 close failed: {exc}") from exc


class MailboxConnector:
    """Opens mailbox sessions for mail accounts."""

    def __init__(self, timeout: float = 60.0) -> None:
        self._timeout = timeout

    @asynccontextmanager
    async def open(
        self,
        account: MailAccount,
        *,
        expunge: bool | None = None,
    ) -> AsyncIterator[MailboxSession]:
        """Open the account's source folder read-write.

        The session is closed on every exit path, expunging deleted messages
        when *expunge* (default: ``account.mark_deleted``) is set.
        """
        session = await asyncio.to_thread(self._connect_sync, account)
        logger.info(
            "mailbox_opened",
            account_id=account.id,
            host=account.host,
            protocol=account.protocol.value,
        )
        try:
            yield session
        finally:
            await session.close(account.mark_deleted if expunge is None else expunge)

    async def test_connection(self, account: MailAccount) -> None:
        """Open and immediately close a session; raise ConnectionFailure on any error."""
        try:
            async with self.open(account, expunge=False):
                pass
        except ConnectionFailure:
            raise
        except Exception as exc:
            raise ConnectionFailure(str(exc)) from exc

    # ------------------------------------------------------------------
    # Synchronous helpers (run in thread)
    # ------------------------------------------------------------------

    def _connect_sync(self, account: MailAccount) -> MailboxSession:
        port = account.port or _DEFAULT_PORTS[account.protocol]
        try:
            if account.protocol.is_cursor_capable:
                return self._open_imap(account, port)
            return self._open_pop3(account, port)
        except (imaplib.IMAP4.error, poplib.error_proto, OSError) as exc:
            raise ConnectionFailure(
                f"Cannot open {account.protocol.value}://{account.host}:{port}: {exc}"
            ) from exc

    def _open_imap(self, account: MailAccount, port: int) -> ImapSession:
        if account.protocol.uses_ssl:
            conn = imaplib.IMAP4_SSL(account.host, port, timeout=self._timeout)
        else:
            conn = imaplib.IMAP4(account.host, port, timeout=self._timeout)
        try:
            conn.login(account.username, account.password.get_secret_value())
            folder = fix_folder_separator(account.folder, self._native_separator(conn, account.folder))
            status, data = conn.select(_quote(folder), readonly=False)
            if status != "OK":
                raise ConnectionFailure(f"Cannot select folder {folder!r}: {data!r}")
        except BaseException:
            try:
                conn.logout()
            except (imaplib.IMAP4.error, OSError):
                logger.debug("imap_logout_after_failed_open_failed")
            raise
        return ImapSession(conn, account.protocol, folder)

    def _native_separator(self, conn: imaplib.IMAP4, folder: str) -> str | None:
        separator = next((s for s in MAIL_STORE_SEPARATORS if s in folder), None)
        if separator is None:
            return None
        top = folder.split(separator)[0]
        status, data = conn.list('""', _quote(top))
        if status != "OK" or not data or not isinstance(data[0], bytes):
            return None
        match = _LIST_RESPONSE.match(data[0])
        if match is None or match.group("delim") == b"NIL":
            return None
        return match.group("delim").strip(b'"').replace(b"\\\\", b"\\").decode()

    def _open_pop3(self, account: MailAccount, port: int) -> Pop3Session:
        if account.protocol.uses_ssl:
            conn = poplib.POP3_SSL(account.host, port, timeout=self._timeout)
        else:
            conn = poplib.POP3(account.host, port, timeout=self._timeout)
        try:
            conn.user(account.username)
            conn.pass_(account.password.get_secret_value())
        except BaseException:
            try:
                conn.quit()
            except (poplib.error_proto, OSError):
                logger.debug("pop3_quit_after_failed_open_failed")
            raise
        return Pop3Session(conn, account.protocol)
