"""
Domain models for storage browsing.

These models have no dependencies on FastAPI, boto3 or Snowflake. The
API layer translates them to JSON and the infrastructure layer fills
them from bucket listings and database rows.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Iterator, Optional
from urllib.parse import urlparse

from .paths import normalize_path


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StorageConfig:
    """
    An administrator-configured S3-compatible bucket exposed as a named root.

    The secret is only ever read by the storage client; API responses
    are built from `public_view()` which leaves it out.
    """
    name: str
    endpoint: str
    access_key_id: str
    bucket: str
    secret_access_key: str = ""
    region: str = "auto"
    base_path: str = ""
    is_public: bool = False
    id: Optional[int] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        self.name = self.name.strip()
        self.endpoint = self.endpoint.strip().rstrip("/")
        self.bucket = self.bucket.strip()
        self.access_key_id = self.access_key_id.strip()
        self.region = (self.region or "auto").strip()

        if not self.name:
            raise ValueError("Storage name cannot be empty")
        if not self.bucket:
            raise ValueError("Bucket cannot be empty")
        if not self.access_key_id:
            raise ValueError("Access key ID cannot be empty")

        parsed = urlparse(self.endpoint)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("Endpoint must be an http(s) URL")

        self.base_path = normalize_path(self.base_path)

    def with_changes(self, **changes) -> "StorageConfig":
        """
        Copy with the given fields replaced.

        An empty secret means "keep the current one", matching how the
        edit form leaves the password field blank.
        """
        if not changes.get("secret_access_key"):
            changes.pop("secret_access_key", None)
        changes.setdefault("updated_at", _utcnow())
        return replace(self, **changes)

    def public_view(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "endpoint": self.endpoint,
            "region": self.region,
            "accessKeyId": self.access_key_id,
            "bucket": self.bucket,
            "basePath": self.base_path,
            "isPublic": self.is_public,
        }


@dataclass
class StorageObject:
    """
    One entry of a directory listing.

    `key` is relative to the storage's base path. Directories are
    common prefixes in the bucket; their key has no trailing slash and
    their size is zero.
    """
    key: str
    name: str
    size: int = 0
    last_modified: Optional[datetime] = None
    is_directory: bool = False

    def sort_key(self) -> tuple[bool, str]:
        # Directories first, then case-insensitive by name
        return (not self.is_directory, self.name.lower())


@dataclass
class ObjectMetadata:
    """Metadata of a single object, without its body."""
    key: str
    size: int
    content_type: str
    etag: Optional[str] = None
    last_modified: Optional[datetime] = None


@dataclass
class ObjectContent:
    """
    A readable object body plus the headers needed to serve it.

    `body` is consumed exactly once. `content_range` is set when only
    part of the object was requested.
    """
    metadata: ObjectMetadata
    body: Iterator[bytes]
    content_length: int
    content_range: Optional[str] = None

    @property
    def is_partial(self) -> bool:
        return self.content_range is not None


@dataclass
class FetchResult:
    """Outcome of an offline download."""
    filename: str
    key: str
    size: int
    content_type: str
