"""Extension based content-type lookup."""

from __future__ import annotations

import mimetypes

from .interfaces import MimeTypeTable

DEFAULT_MIME_TYPE = "application/octet-stream"


class StdlibMimeTypeTable(MimeTypeTable):
    """Backed by the platform's :mod:`mimetypes` registry."""

    def __init__(self, extra: dict[str, str] | None = None) -> None:
        self._extra = {ext.lower().lstrip("."): mime for ext, mime in (extra or {}).items()}

    def lookup(self, filename: str) -> str:
        _, dot, ext = filename.rpartition(".")
        if dot and ext.lower() in self._extra:
            return self._extra[ext.lower()]
        mime_type, _ = mimetypes.guess_type(filename, strict=False)
        return mime_type or DEFAULT_MIME_TYPE
