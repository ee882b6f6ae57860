"""String helpers for text that ends up in the repository or its paths."""

from __future__ import annotations

import re
from email.errors import HeaderParseError
from email.header import decode_header, make_header

# NUL is rejected by PostgreSQL text columns; lone surrogates by MySQL utf8mb4.
_UNSTORABLE = re.compile("[\x00\ud800-\udfff]")
_PATH_ILLEGAL = re.compile(r"[/\\:\[\]*|\"']")
_WHITESPACE = re.compile(r"\s+")


def sanitize(value: str | None) -> str:
    """Strip NUL bytes and lone surrogate code points."""
    if not value:
        return ""
    return _UNSTORABLE.sub("", value)


def escape_name(name: str) -> str:
    """Make *name* usable as a single repository path segment."""
    cleaned = _PATH_ILLEGAL.sub("", name)
    return _WHITESPACE.sub(" ", cleaned).strip()


def split_extension(name: str) -> tuple[str, str]:
    """Split ``report.final.pdf`` into ``("report.final", "pdf")``.

    Names without a dot return an empty extension.
    """
    base, dot, ext = name.rpartition(".")
    if not dot or not base:
        return name, ""
    return base, ext


def parent_path(path: str) -> str:
    parent = path.rstrip("/").rpartition("/")[0]
    return parent or "/"


def node_name(path: str) -> str:
    return path.rstrip("/").rpartition("/")[2]


def is_path(node_id: str) -> bool:
    """Repository paths are absolute; anything else is taken as a UUID."""
    return node_id.startswith("/")


def decode_mime_words(value: str) -> str:
    """Decode RFC 2047 encoded words, keeping the raw value when undecodable."""
    try:
        return str(make_header(decode_header(value)))
    except (HeaderParseError, LookupError, UnicodeDecodeError):
        return value
