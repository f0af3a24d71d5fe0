"""
File browsing over a single configured storage.

FileBrowser is the service behind every /api/files request. It knows
about base paths, folder semantics and file types, but not about HTTP,
boto3 or the database: it is handed a StorageConfig and a client that
satisfies the StorageClient protocol.
"""

import logging
from typing import BinaryIO, Optional, Protocol, Union

from .filetypes import DEFAULT_MIME_TYPE, FileTypeInfo, describe, get_mime_type
from .models import FetchResult, ObjectContent, ObjectMetadata, StorageConfig, StorageObject
from .paths import InvalidPathError, basename, child_path, join_key, normalize_path, strip_base

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocols (interfaces)
# ---------------------------------------------------------------------------

class StorageClient(Protocol):
    """
    Interface for object storage operations on one bucket.

    The browser doesn't know or care whether this is S3, R2, MinIO or
    an in-memory mock. Keys are raw bucket keys.
    """

    async def list_objects(self, prefix: str) -> list[StorageObject]:
        """List one level below prefix (delimiter "/")."""
        ...

    async def head_object(self, key: str) -> ObjectMetadata:
        """Metadata for key, or raise a not-found error."""
        ...

    async def get_object(self, key: str, range_header: Optional[str] = None) -> ObjectContent:
        """Open key for streaming, optionally a byte range of it."""
        ...

    async def put_object(
        self,
        key: str,
        body: Union[bytes, BinaryIO],
        content_type: str,
        content_length: Optional[int] = None,
    ) -> None:
        ...

    async def delete_object(self, key: str) -> None:
        ...

    async def delete_prefix(self, prefix: str) -> int:
        """Delete everything under prefix. Returns count deleted."""
        ...

    async def create_folder(self, key: str) -> None:
        """Create an empty "key/" folder marker."""
        ...


class FetchedBody(Protocol):
    file: BinaryIO
    filename: str
    size: int
    content_type: str

    def close(self) -> None: ...


class UrlFetcher(Protocol):
    """Interface for pulling a remote URL into a local file."""

    async def fetch(self, url: str, filename: Optional[str] = None) -> FetchedBody:
        ...


# ---------------------------------------------------------------------------
# Browser Service
# ---------------------------------------------------------------------------

class FileBrowser:
    """
    Path-level operations on one storage.

    Every user-visible path is relative to the storage's base path; the
    browser maps it to a bucket key on the way in and strips the base
    path from listed keys on the way out. The storage root itself can
    be listed but never deleted.
    """

    def __init__(self, storage: StorageConfig, client: StorageClient) -> None:
        self._storage = storage
        self._client = client

    @property
    def storage(self) -> StorageConfig:
        return self._storage

    def _key(self, path: str) -> str:
        return join_key(self._storage.base_path, path)

    def _require_non_root(self, path: str) -> str:
        path = normalize_path(path)
        if not path:
            raise InvalidPathError("The storage root cannot be modified")
        return path

    async def list(self, path: str = "") -> list[StorageObject]:
        """
        Directory listing at path.

        Returned keys are relative to the base path, so they can be
        passed straight back into the other operations.
        """
        path = normalize_path(path)
        objects = await self._client.list_objects(self._key(path))

        base = self._storage.base_path
        for obj in objects:
            obj.key = strip_base(base, obj.key)

        logger.debug(
            "Listed directory",
            extra={"storage_id": self._storage.id, "path": path, "count": len(objects)}
        )
        return objects

    async def open(self, path: str, range_header: Optional[str] = None) -> ObjectContent:
        """
        Open a file for download or preview.

        Stored objects without a useful content type get one derived
        from the filename so browsers can render previews inline.
        """
        path = self._require_non_root(path)
        content = await self._client.get_object(self._key(path), range_header)
        content.metadata.key = path
        if content.metadata.content_type == DEFAULT_MIME_TYPE:
            content.metadata.content_type = get_mime_type(path)
        return content

    async def describe(self, path: str) -> tuple[ObjectMetadata, FileTypeInfo]:
        """Object metadata plus how the UI should preview it."""
        path = self._require_non_root(path)
        metadata = await self._client.head_object(self._key(path))
        metadata.key = path
        info = describe(basename(path))
        if metadata.content_type == DEFAULT_MIME_TYPE:
            metadata.content_type = info.mime_type
        return metadata, info

    async def upload(
        self,
        path: str,
        body: Union[bytes, BinaryIO],
        content_type: Optional[str] = None,
        content_length: Optional[int] = None,
    ) -> str:
        """
        Store body at path (which includes the filename).

        A missing or generic content type is replaced by a guess from
        the filename extension.
        """
        path = self._require_non_root(path)
        if not content_type or content_type == DEFAULT_MIME_TYPE:
            content_type = get_mime_type(basename(path))

        await self._client.put_object(self._key(path), body, content_type, content_length)

        logger.info(
            "Uploaded file",
            extra={
                "storage_id": self._storage.id,
                "path": path,
                "size_bytes": content_length,
                "content_type": content_type,
            }
        )
        return path

    async def delete_file(self, path: str) -> None:
        """
        Delete one file.

        S3 treats deleting a missing key as success; we check first so
        the caller gets a not-found error instead of a silent no-op.
        """
        path = self._require_non_root(path)
        key = self._key(path)
        await self._client.head_object(key)
        await self._client.delete_object(key)

        logger.info("Deleted file", extra={"storage_id": self._storage.id, "path": path})

    async def delete_folder(self, path: str) -> int:
        """Delete a folder and everything under it. Returns count deleted."""
        path = self._require_non_root(path)
        count = await self._client.delete_prefix(self._key(path))

        logger.info(
            "Deleted folder",
            extra={"storage_id": self._storage.id, "path": path, "count": count}
        )
        return count

    async def mkdir(self, path: str) -> str:
        """
        Create an empty folder at path.

        The last segment is validated as a single name so "a/b" creates
        "b" inside an existing or implicit "a".
        """
        path = self._require_non_root(path)
        parent, _, name = path.rpartition("/")
        path = child_path(parent, name)

        await self._client.create_folder(self._key(path))

        logger.info("Created folder", extra={"storage_id": self._storage.id, "path": path})
        return path

    async def fetch(
        self,
        directory: str,
        url: str,
        fetcher: UrlFetcher,
        filename: Optional[str] = None,
    ) -> FetchResult:
        """
        Offline download: pull url into directory.

        The remote body is fully received before anything is written to
        the bucket, so a failed download never leaves a partial object.
        """
        directory = normalize_path(directory)
        if filename is not None:
            filename = filename.strip() or None
            if filename is not None:
                # Validate early, before spending bandwidth
                child_path(directory, filename)

        fetched = await fetcher.fetch(url, filename)
        try:
            path = child_path(directory, fetched.filename)
            await self._client.put_object(
                self._key(path),
                fetched.file,
                fetched.content_type,
                fetched.size,
            )
        finally:
            fetched.close()

        logger.info(
            "Offline download stored",
            extra={
                "storage_id": self._storage.id,
                "url": url,
                "path": path,
                "size_bytes": fetched.size,
            }
        )

        return FetchResult(
            filename=fetched.filename,
            key=path,
            size=fetched.size,
            content_type=fetched.content_type,
        )
