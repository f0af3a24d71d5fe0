"""
Object storage clients for S3-compatible backends.

One client talks to one configured storage (endpoint + bucket). AWS S3,
Cloudflare R2, Aliyun OSS, Tencent COS and MinIO all speak the S3 API,
so a single boto3-based implementation covers them; only the endpoint,
region and addressing style differ.

Mock mode keeps objects in memory, enabling API testing without
provisioning any bucket.

Clients work with raw bucket keys. Mapping user paths onto a storage's
base path is the job of core.files.browser.FileBrowser.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import BinaryIO, Optional, Union

from ...core.files.browser import StorageClient
from ...core.files.filetypes import DEFAULT_MIME_TYPE
from ...core.files.models import ObjectContent, ObjectMetadata, StorageConfig, StorageObject
from ...core.files.paths import as_prefix

logger = logging.getLogger(__name__)

# S3 DeleteObjects accepts at most this many keys per request
DELETE_BATCH_SIZE = 1000
STREAM_CHUNK_SIZE = 64 * 1024

Body = Union[bytes, BinaryIO]


class StorageError(Exception):
    """Raised when storage operations fail."""
    pass


class ObjectNotFoundError(StorageError):
    """Raised when a key does not exist in the bucket."""
    pass


class InvalidRangeError(StorageError):
    """Raised when a Range header cannot be satisfied."""
    pass


@dataclass
class S3ClientConfig:
    """
    Connection settings derived from a StorageConfig.

    Path-style addressing is the default because MinIO and most
    self-hosted endpoints don't serve virtual-host buckets. OSS and COS
    require virtual-host style, so it can be switched off per storage.
    """
    endpoint_url: str
    access_key_id: str
    secret_access_key: str
    bucket_name: str
    region: str = "auto"
    path_style: bool = True

    @classmethod
    def from_storage(cls, storage: StorageConfig) -> "S3ClientConfig":
        host = storage.endpoint.lower()
        virtual_host_only = "aliyuncs.com" in host or "myqcloud.com" in host
        region = storage.region or "auto"
        if region == "auto" and "amazonaws.com" in host:
            # AWS rejects the "auto" region R2 accepts
            region = "us-east-1"
        return cls(
            endpoint_url=storage.endpoint,
            access_key_id=storage.access_key_id,
            secret_access_key=storage.secret_access_key,
            bucket_name=storage.bucket,
            region=region,
            path_style=not virtual_host_only,
        )


def _sorted(objects: list[StorageObject]) -> list[StorageObject]:
    return sorted(objects, key=StorageObject.sort_key)


def _leaf_name(key: str) -> str:
    return key.rstrip("/").rsplit("/", 1)[-1]


class S3StorageClient:
    """
    S3-compatible object storage client.

    Uses boto3 so request signing (SigV4), pagination and multipart
    uploads come from the SDK.

    All methods are async to match the Protocol even though boto3 is
    synchronous.
    """

    def __init__(self, config: S3ClientConfig) -> None:
        try:
            import boto3
            from botocore.config import Config
        except ImportError:
            raise ImportError(
                "boto3 is required for S3 storage. Install with: pip install boto3"
            )

        self._config = config

        boto_config = Config(
            signature_version="s3v4",
            s3={"addressing_style": "path" if config.path_style else "virtual"},
            retries={"max_attempts": 3, "mode": "standard"},
        )

        self._s3_client = boto3.client(
            "s3",
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
            region_name=config.region,
            config=boto_config,
        )

        logger.info(
            "Initialized S3 storage client",
            extra={
                "bucket": config.bucket_name,
                "endpoint": config.endpoint_url,
            }
        )

    @staticmethod
    def _error_code(error: Exception) -> str:
        response = getattr(error, "response", None) or {}
        return str(response.get("Error", {}).get("Code", ""))

    def _translate(self, error: Exception, action: str, key: str) -> StorageError:
        code = self._error_code(error)
        if code in ("NoSuchKey", "404", "NotFound"):
            return ObjectNotFoundError(f"Object not found: {key}")
        if code == "InvalidRange":
            return InvalidRangeError(f"Range not satisfiable for {key}")

        logger.error(
            f"Failed to {action}",
            extra={"bucket": self._config.bucket_name, "key": key, "error": str(error)}
        )
        return StorageError(f"{action.capitalize()} failed: {error}")

    async def list_objects(self, prefix: str) -> list[StorageObject]:
        """
        List direct children of a prefix.

        Walks every page of ListObjectsV2. Common prefixes become
        directory entries; the prefix's own folder marker is skipped.
        """
        prefix = as_prefix(prefix)
        objects: list[StorageObject] = []

        try:
            paginator = self._s3_client.get_paginator("list_objects_v2")
            pages = paginator.paginate(
                Bucket=self._config.bucket_name,
                Prefix=prefix,
                Delimiter="/",
            )
            for page in pages:
                for common in page.get("CommonPrefixes", []):
                    dir_key = common["Prefix"].rstrip("/")
                    objects.append(StorageObject(
                        key=dir_key,
                        name=_leaf_name(dir_key),
                        is_directory=True,
                    ))
                for item in page.get("Contents", []):
                    if item["Key"] == prefix or item["Key"].endswith("/"):
                        continue
                    objects.append(StorageObject(
                        key=item["Key"],
                        name=_leaf_name(item["Key"]),
                        size=item.get("Size", 0),
                        last_modified=item.get("LastModified"),
                    ))
        except Exception as e:
            raise self._translate(e, "list objects", prefix)

        logger.debug(
            "Listed objects",
            extra={"bucket": self._config.bucket_name, "prefix": prefix, "count": len(objects)}
        )

        return _sorted(objects)

    async def head_object(self, key: str) -> ObjectMetadata:
        try:
            response = self._s3_client.head_object(
                Bucket=self._config.bucket_name,
                Key=key,
            )
        except Exception as e:
            raise self._translate(e, "read metadata", key)

        return ObjectMetadata(
            key=key,
            size=response.get("ContentLength", 0),
            content_type=response.get("ContentType") or DEFAULT_MIME_TYPE,
            etag=response.get("ETag"),
            last_modified=response.get("LastModified"),
        )

    async def get_object(self, key: str, range_header: Optional[str] = None) -> ObjectContent:
        """
        Open an object for streaming.

        A syntactically valid Range header is passed through; S3 answers
        with the matching ContentRange which we hand back to the HTTP
        layer. Anything else raises InvalidRangeError up front.
        """
        params = {"Bucket": self._config.bucket_name, "Key": key}
        if range_header:
            check_range(range_header)
            params["Range"] = range_header.strip()

        try:
            response = self._s3_client.get_object(**params)
        except Exception as e:
            raise self._translate(e, "download", key)

        body = response["Body"]
        content_range = response.get("ContentRange") if range_header else None
        content_length = response.get("ContentLength", 0)
        total_size = content_length
        if content_range and "/" in content_range:
            total = content_range.rsplit("/", 1)[-1]
            if total.isdigit():
                total_size = int(total)

        return ObjectContent(
            metadata=ObjectMetadata(
                key=key,
                size=total_size,
                content_type=response.get("ContentType") or DEFAULT_MIME_TYPE,
                etag=response.get("ETag"),
                last_modified=response.get("LastModified"),
            ),
            body=body.iter_chunks(chunk_size=STREAM_CHUNK_SIZE),
            content_length=content_length,
            content_range=content_range,
        )

    async def put_object(
        self,
        key: str,
        body: Body,
        content_type: str,
        content_length: Optional[int] = None,
    ) -> None:
        """
        Upload an object.

        File-like bodies go through upload_fileobj so large files are
        sent as multipart uploads without loading them in memory.
        """
        try:
            if isinstance(body, (bytes, bytearray)):
                self._s3_client.put_object(
                    Bucket=self._config.bucket_name,
                    Key=key,
                    Body=bytes(body),
                    ContentType=content_type,
                )
                size = len(body)
            else:
                self._s3_client.upload_fileobj(
                    body,
                    self._config.bucket_name,
                    key,
                    ExtraArgs={"ContentType": content_type},
                )
                size = content_length
        except Exception as e:
            raise self._translate(e, "upload", key)

        logger.info(
            "Uploaded object",
            extra={
                "bucket": self._config.bucket_name,
                "key": key,
                "size_bytes": size,
                "content_type": content_type,
            }
        )

    async def delete_object(self, key: str) -> None:
        try:
            self._s3_client.delete_object(
                Bucket=self._config.bucket_name,
                Key=key,
            )
        except Exception as e:
            raise self._translate(e, "delete", key)

        logger.info("Deleted object", extra={"bucket": self._config.bucket_name, "key": key})

    async def delete_prefix(self, prefix: str) -> int:
        """
        Delete every object under a prefix, folder markers included.

        Keys are collected across all list pages and removed in batches
        of DELETE_BATCH_SIZE. Per-key failures reported by S3 abort the
        operation with StorageError.
        """
        prefix = as_prefix(prefix)
        if not prefix:
            raise StorageError("Refusing to delete the bucket root")

        count = 0
        try:
            paginator = self._s3_client.get_paginator("list_objects_v2")
            keys = [
                item["Key"]
                for page in paginator.paginate(Bucket=self._config.bucket_name, Prefix=prefix)
                for item in page.get("Contents", [])
            ]

            for start in range(0, len(keys), DELETE_BATCH_SIZE):
                batch = keys[start:start + DELETE_BATCH_SIZE]
                response = self._s3_client.delete_objects(
                    Bucket=self._config.bucket_name,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
                errors = response.get("Errors", [])
                if errors:
                    first = errors[0]
                    raise StorageError(
                        f"Failed to delete {len(errors)} object(s), "
                        f"first: {first.get('Key')} ({first.get('Code')})"
                    )
                count += len(batch)
        except StorageError:
            raise
        except Exception as e:
            raise self._translate(e, "delete folder", prefix)

        logger.info(
            "Deleted prefix",
            extra={"bucket": self._config.bucket_name, "prefix": prefix, "count": count}
        )

        return count

    async def create_folder(self, key: str) -> None:
        marker = as_prefix(key)
        try:
            self._s3_client.put_object(
                Bucket=self._config.bucket_name,
                Key=marker,
                Body=b"",
            )
        except Exception as e:
            raise self._translate(e, "create folder", marker)

        logger.info("Created folder", extra={"bucket": self._config.bucket_name, "key": marker})


# ---------------------------------------------------------------------------
# Mock Storage for Local Development
# ---------------------------------------------------------------------------

_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")


def check_range(range_header: str) -> tuple[str, str]:
    """
    Reject Range headers no object size could satisfy.

    Returns the (first, last) strings of a single "bytes=" range. Both
    clients call this, so S3 never sees a header it would silently
    ignore.
    """
    match = _RANGE_RE.match(range_header.strip())
    if not match or match.group(1) == match.group(2) == "":
        raise InvalidRangeError(f"Unsupported range: {range_header}")

    first, last = match.group(1), match.group(2)
    if first == "" and int(last) == 0:
        raise InvalidRangeError(f"Unsatisfiable range: {range_header}")
    if first and last and int(first) > int(last):
        raise InvalidRangeError(f"Unsatisfiable range: {range_header}")
    return first, last


def parse_range(range_header: str, size: int) -> tuple[int, int]:
    """
    Resolve a single-range "bytes=" header to inclusive (start, end).

    Supports "a-b", "a-" and the suffix form "-n". Multiple ranges are
    not supported.
    """
    first, last = check_range(range_header)
    if first == "":
        start = max(size - int(last), 0)
        end = size - 1
    else:
        start = int(first)
        end = int(last) if last else size - 1
        end = min(end, size - 1)

    if start >= size or start > end:
        raise InvalidRangeError(f"Unsatisfiable range: {range_header}")
    return start, end


@dataclass
class _StoredObject:
    data: bytes
    content_type: str
    last_modified: datetime


class MockStorageClient:
    """
    In-memory bucket for local development and tests.

    Mirrors S3 listing semantics closely enough for the file browser:
    prefixes become directories and "key/" markers represent empty
    folders.
    """

    def __init__(self, bucket_name: str = "mock") -> None:
        self.bucket_name = bucket_name
        self._objects: dict[str, _StoredObject] = {}
        logger.info("Initialized mock storage client (in-memory)", extra={"bucket": bucket_name})

    async def list_objects(self, prefix: str) -> list[StorageObject]:
        prefix = as_prefix(prefix)
        directories: dict[str, StorageObject] = {}
        files: list[StorageObject] = []

        for key, stored in self._objects.items():
            if not key.startswith(prefix) or key == prefix:
                continue
            rest = key[len(prefix):]
            if "/" in rest:
                dir_name = rest.split("/", 1)[0]
                dir_key = prefix + dir_name
                directories.setdefault(dir_key, StorageObject(
                    key=dir_key,
                    name=dir_name,
                    is_directory=True,
                ))
            else:
                files.append(StorageObject(
                    key=key,
                    name=rest,
                    size=len(stored.data),
                    last_modified=stored.last_modified,
                ))

        return _sorted(list(directories.values()) + files)

    def _get(self, key: str) -> _StoredObject:
        if key not in self._objects:
            raise ObjectNotFoundError(f"Object not found: {key}")
        return self._objects[key]

    async def head_object(self, key: str) -> ObjectMetadata:
        stored = self._get(key)
        return ObjectMetadata(
            key=key,
            size=len(stored.data),
            content_type=stored.content_type,
            last_modified=stored.last_modified,
        )

    async def get_object(self, key: str, range_header: Optional[str] = None) -> ObjectContent:
        stored = self._get(key)
        size = len(stored.data)
        data = stored.data
        content_range = None

        if range_header:
            start, end = parse_range(range_header, size)
            data = stored.data[start:end + 1]
            content_range = f"bytes {start}-{end}/{size}"

        return ObjectContent(
            metadata=ObjectMetadata(
                key=key,
                size=size,
                content_type=stored.content_type,
                last_modified=stored.last_modified,
            ),
            body=iter([data]),
            content_length=len(data),
            content_range=content_range,
        )

    async def put_object(
        self,
        key: str,
        body: Body,
        content_type: str,
        content_length: Optional[int] = None,
    ) -> None:
        data = bytes(body) if isinstance(body, (bytes, bytearray)) else body.read()
        self._objects[key] = _StoredObject(
            data=data,
            content_type=content_type,
            last_modified=datetime.now(timezone.utc),
        )
        logger.debug("Stored object in mock storage", extra={"key": key, "size_bytes": len(data)})

    async def delete_object(self, key: str) -> None:
        # S3 DeleteObject succeeds for missing keys as well
        self._objects.pop(key, None)

    async def delete_prefix(self, prefix: str) -> int:
        prefix = as_prefix(prefix)
        if not prefix:
            raise StorageError("Refusing to delete the bucket root")

        keys = [key for key in self._objects if key.startswith(prefix)]
        for key in keys:
            del self._objects[key]
        return len(keys)

    async def create_folder(self, key: str) -> None:
        self._objects[as_prefix(key)] = _StoredObject(
            data=b"",
            content_type=DEFAULT_MIME_TYPE,
            last_modified=datetime.now(timezone.utc),
        )

    def _keys(self) -> list[str]:
        """All stored keys (for test assertions)."""
        return sorted(self._objects)


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_storage_client(
    storage: Optional[StorageConfig] = None,
    mock_mode: bool = False,
) -> StorageClient:
    """
    Create a client for one configured storage.

    Args:
        storage: Storage configuration (required if not mock_mode)
        mock_mode: If True, return an in-memory client

    Returns:
        StorageClient implementation (S3 or Mock)
    """
    if mock_mode:
        return MockStorageClient(bucket_name=storage.bucket if storage else "mock")

    if storage is None:
        raise ValueError("storage is required when not in mock mode")

    return S3StorageClient(S3ClientConfig.from_storage(storage))


class StorageClientCache:
    """
    Clients keyed by storage id.

    boto3 clients are expensive to build and thread-safe to share, and
    mock clients must survive across requests to keep their contents.
    Entries are dropped whenever the storage row changes.
    """

    def __init__(self, mock_mode: bool = False) -> None:
        self._mock_mode = mock_mode
        self._clients: dict[int, StorageClient] = {}

    def get(self, storage: StorageConfig) -> StorageClient:
        client = self._clients.get(storage.id)
        if client is None:
            client = create_storage_client(storage, mock_mode=self._mock_mode)
            self._clients[storage.id] = client
        return client

    def invalidate(self, storage_id: int) -> None:
        """Forget the client after its storage was edited."""
        if self._mock_mode:
            # In-memory contents belong to the storage, not its credentials
            return
        self._clients.pop(storage_id, None)

    def remove(self, storage_id: int) -> None:
        self._clients.pop(storage_id, None)

    def clear(self) -> None:
        self._clients.clear()
