"""S3-backed repository for folders, mail nodes and documents.

Node layout below ``<prefix>``:

* folder   ``<prefix><path>/``  empty object, ``node-type: folder``
* mail     ``<prefix><path>/``  mail JSON body, ``node-type: mail``
* document ``<prefix><path>``   raw content, ``node-type: document``
* UUID index ``<prefix>/.uuid/<uuid>`` holds the node path

All boto3 calls are wrapped with ``asyncio.to_thread()`` to avoid blocking.
"""

from __future__ import annotations

import asyncio
import uuid as uuidlib
from urllib.parse import quote

import boto3
import structlog
from botocore.exceptions import ClientError

from .config import S3Config
from .exceptions import FileSizeExceededError, ItemExistsError, PathNotFoundError
from .interfaces import Repository
from .models import CanonicalMail
from .text import parent_path

logger = structlog.get_logger()

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def _is_not_found(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code", "Unknown") in _NOT_FOUND_CODES


class S3Repository(Repository):
    """Stores repository nodes as S3 objects."""

    def __init__(self, config: S3Config) -> None:
        self._config = config
        self._client = None  # type: ignore[assignment]
        self._root = "/" + config.prefix.strip("/") if config.prefix.strip("/") else ""

    async def start(self) -> None:
        """Create the boto3 S3 client."""
        kwargs: dict = {"region_name": self._config.region}
        if self._config.endpoint_url:
            kwargs["endpoint_url"] = self._config.endpoint_url
        self._client = await asyncio.to_thread(boto3.client, "s3", **kwargs)
        logger.info("s3_repository_started", bucket=self._config.bucket)

    async def stop(self) -> None:
        """Clean up the boto3 client."""
        self._client = None
        logger.info("s3_repository_stopped")

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def _key(self, path: str) -> str:
        return f"{self._root}/{path.strip('/')}".lstrip("/")

    def _container_key(self, path: str) -> str:
        return self._key(path) + "/"

    def _uuid_key(self, uuid: str) -> str:
        return f"{self._root}/.uuid/{uuid}".lstrip("/")

    def _path_from_key(self, key: str) -> str:
        return "/" + key.rstrip("/")[len(self._root.lstrip("/")):].lstrip("/")

    # ------------------------------------------------------------------
    # Node lookup
    # ------------------------------------------------------------------

    async def _head(self, key: str) -> dict | None:
        assert self._client is not None, "S3 client not started"
        try:
            return await asyncio.to_thread(self._client.head_object, Bucket=self._config.bucket, Key=key)
        except ClientError as exc:
            if _is_not_found(exc):
                return None
            raise

    async def _node_metadata(self, path: str) -> dict | None:
        if path.strip("/") == "":
            return {"node-type": "folder", "uuid": ""}
        for key in (self._container_key(path), self._key(path)):
            head = await self._head(key)
            if head is not None:
                return head.get("Metadata", {})
        return None

    async def has_node(self, path: str) -> bool:
        return await self._node_metadata(path) is not None

    async def resolve_uuid_from_path(self, path: str) -> str:
        metadata = await self._node_metadata(path)
        if metadata is None:
            raise PathNotFoundError(path)
        return metadata.get("uuid", "")

    async def resolve_path_from_uuid(self, uuid: str) -> str:
        return (await self._get(self._uuid_key(uuid), uuid)).decode("utf-8")

    # ------------------------------------------------------------------
    # Node creation
    # ------------------------------------------------------------------

    async def create_folder(self, path: str) -> str:
        await self._check_free(path)
        uuid = await self._put(self._container_key(path), b"", "folder", path)
        logger.debug("s3_folder_created", path=path, uuid=uuid)
        return uuid

    async def create_mail(self, path: str, mail: CanonicalMail, owner: str) -> str:
        await self._check_free(path)
        uuid = str(uuidlib.uuid4())
        body = mail.model_copy(update={"path": path, "uuid": uuid}).model_dump_json().encode("utf-8")
        await self._put(
            self._container_key(path),
            body,
            "mail",
            path,
            uuid=uuid,
            content_type="application/json",
            metadata={"owner": owner},
        )
        logger.debug("s3_mail_created", path=path, uuid=uuid, size=len(body))
        return uuid

    async def create_document(
        self,
        path: str,
        content: bytes,
        size: int,
        owner: str,
        group_hint: str | None = None,
        mime_type: str = "application/octet-stream",
    ) -> str:
        if size > self._config.max_file_size_bytes:
            raise FileSizeExceededError(
                f"{path}: {size} bytes exceeds {self._config.max_file_size_bytes}"
            )
        await self._check_free(path)

        metadata = {"owner": owner}
        if group_hint:
            metadata["group-hint"] = quote(group_hint)
        uuid = await self._put(
            self._key(path),
            content,
            "document",
            path,
            content_type=mime_type,
            metadata=metadata,
        )
        logger.debug("s3_document_created", path=path, uuid=uuid, size=size)
        return uuid

    async def _check_free(self, path: str) -> None:
        if await self.has_node(path):
            raise ItemExistsError(path)
        parent = parent_path(path)
        if parent != "/" and not await self.has_node(parent):
            raise PathNotFoundError(parent)

    async def _put(
        self,
        key: str,
        body: bytes,
        node_type: str,
        path: str,
        *,
        uuid: str | None = None,
        content_type: str = "application/octet-stream",
        metadata: dict[str, str] | None = None,
    ) -> str:
        assert self._client is not None, "S3 client not started"
        uuid = uuid or str(uuidlib.uuid4())
        await asyncio.to_thread(
            self._client.put_object,
            Bucket=self._config.bucket,
            Key=key,
            Body=body,
            ContentType=content_type,
            Metadata={"uuid": uuid, "node-type": node_type, **(metadata or {})},
        )
        await asyncio.to_thread(
            self._client.put_object,
            Bucket=self._config.bucket,
            Key=self._uuid_key(uuid),
            Body=path.encode("utf-8"),
            ContentType="text/plain",
        )
        return uuid

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _get(self, key: str, node: str) -> bytes:
        assert self._client is not None, "S3 client not started"
        try:
            response = await asyncio.to_thread(
                self._client.get_object,
                Bucket=self._config.bucket,
                Key=key,
            )
        except ClientError as exc:
            if _is_not_found(exc):
                raise PathNotFoundError(node) from exc
            raise
        return await asyncio.to_thread(response["Body"].read)

    async def get_content(self, path: str) -> bytes:
        return await self._get(self._key(path), path)

    async def get_mail(self, path: str) -> CanonicalMail:
        data = await self._get(self._container_key(path), path)
        return CanonicalMail.model_validate_json(data)

    async def list_documents(self, path: str) -> list[str]:
        assert self._client is not None, "S3 client not started"
        keys = await asyncio.to_thread(self._list_sync, self._container_key(path))
        return [self._path_from_key(key) for key in keys]

    def _list_sync(self, prefix: str) -> list[str]:
        keys: list[str] = []
        paginator = self._client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self._config.bucket, Prefix=prefix, Delimiter="/"):
            for item in page.get("Contents", []):
                if item["Key"] != prefix and not item["Key"].endswith("/"):
                    keys.append(item["Key"])
        return keys
