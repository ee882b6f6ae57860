"""Repository folder layout for imported mail."""

from __future__ import annotations

from datetime import datetime

import structlog

from .exceptions import ItemExistsError
from .interfaces import Repository

logger = structlog.get_logger()


class PathResolver:
    """Computes and creates destination folders.

    Per-user mail lives under ``<mail_root>/<owner>``; accounts without
    filters import into ``<mail_root>/<owner>/<inbox_name>``.
    """

    def __init__(self, repository: Repository, mail_root: str = "/mail", inbox_name: str = "Inbox") -> None:
        self._repository = repository
        self._mail_root = "/" + mail_root.strip("/")
        self._inbox_name = inbox_name

    def user_mail_path(self, owner: str) -> str:
        return f"{self._mail_root}/{owner}"

    def inbox_path(self, owner: str) -> str:
        return f"{self.user_mail_path(owner)}/{self._inbox_name}"

    async def ensure_path(self, path: str) -> str:
        """Create every missing folder along *path* and return it."""
        current = ""
        for segment in path.strip("/").split("/"):
            if not segment:
                continue
            current = f"{current}/{segment}"
            await self._ensure_folder(current)
        return current or "/"

    async def resolve(self, base_path: str, grouping: bool, received_date: datetime) -> str:
        """Destination folder for one mail.

        Grouping nests the mail under unpadded ``year/month/day`` folders of
        its received date.
        """
        if not grouping:
            return base_path
        path = base_path.rstrip("/")
        for part in (received_date.year, received_date.month, received_date.day):
            path = f"{path}/{part}"
            await self._ensure_folder(path)
        return path

    async def _ensure_folder(self, path: str) -> None:
        if await self._repository.has_node(path):
            return
        try:
            await self._repository.create_folder(path)
            logger.debug("folder_created", path=path)
        except ItemExistsError:
            # lost a creation race; fine as long as the folder is there now
            if not await self._repository.has_node(path):
                raise
