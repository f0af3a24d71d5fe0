"""
Snowflake repository for storage configurations.

This module implements the repository pattern for the `storages` table.
The repository:
1. Translates between StorageConfig and database rows
2. Encapsulates all SQL queries
3. Encrypts credentials on the way in and decrypts them when a single
   storage is loaded

The application code never writes SQL directly; it asks the repository
for what it needs in domain terms.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from ....core.files.models import StorageConfig
from ...secrets import SecretCipher

logger = logging.getLogger(__name__)


class SnowflakeConnection(Protocol):
    """
    Protocol for Snowflake connections.

    Using a protocol means tests can provide a mock without
    importing the actual snowflake-connector-python.
    """

    def cursor(self): ...
    def commit(self) -> None: ...


@dataclass
class SnowflakeConfig:
    """Configuration for Snowflake connection."""
    account: str
    user: str
    password: Optional[str] = None
    private_key_path: Optional[str] = None
    private_key_base64: Optional[str] = None
    database: str = "CLIST"
    schema: str = "PUBLIC"
    warehouse: str = "COMPUTE_WH"
    role: Optional[str] = None


class StorageNotFoundError(Exception):
    """Raised when a requested storage doesn't exist."""
    pass


# Column order shared by every SELECT and the INSERT
STORAGE_COLUMNS = (
    "id",
    "name",
    "endpoint",
    "region",
    "access_key_id",
    "secret_access_key",
    "bucket",
    "base_path",
    "is_public",
    "created_at",
    "updated_at",
)

_SELECT = f"SELECT {', '.join(STORAGE_COLUMNS)} FROM storages"

SCHEMA_STATEMENTS = (
    "CREATE SEQUENCE IF NOT EXISTS storages_id_seq START = 1 INCREMENT = 1",
    """
    CREATE TABLE IF NOT EXISTS storages (
        id INTEGER NOT NULL PRIMARY KEY,
        name VARCHAR NOT NULL,
        endpoint VARCHAR NOT NULL,
        region VARCHAR NOT NULL DEFAULT 'auto',
        access_key_id VARCHAR NOT NULL,
        secret_access_key VARCHAR NOT NULL,
        bucket VARCHAR NOT NULL,
        base_path VARCHAR NOT NULL DEFAULT '',
        is_public BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMP_TZ NOT NULL,
        updated_at TIMESTAMP_TZ NOT NULL
    )
    """,
)


class StorageRepository:
    """
    Repository for storage configuration persistence.

    Each method corresponds to a use case the API needs:
    - list_all / list_public: the storage picker (admin vs. visitors)
    - get: resolve the storage behind a file request
    - create / update / delete: the admin storage editor
    """

    def __init__(self, connection: SnowflakeConnection, cipher: Optional[SecretCipher] = None) -> None:
        self._conn = connection
        self._cipher = cipher or SecretCipher()

    def ensure_schema(self) -> None:
        """Create the sequence and table if they don't exist yet."""
        cursor = self._conn.cursor()
        try:
            for statement in SCHEMA_STATEMENTS:
                cursor.execute(statement)
            self._conn.commit()
            logger.info("Storage schema ready")
        finally:
            cursor.close()

    def ping(self) -> None:
        """Round-trip a trivial query (readiness checks)."""
        cursor = self._conn.cursor()
        try:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        finally:
            cursor.close()

    def list_all(self) -> list[StorageConfig]:
        """Every storage, secrets left empty. Use get() for a usable config."""
        return self._select(f"{_SELECT} ORDER BY id", with_secret=False)

    def list_public(self) -> list[StorageConfig]:
        return self._select(f"{_SELECT} WHERE is_public = TRUE ORDER BY id", with_secret=False)

    def get(self, storage_id: int) -> StorageConfig:
        rows = self._select(f"{_SELECT} WHERE id = %s", (storage_id,))
        if not rows:
            raise StorageNotFoundError(f"Storage {storage_id} not found")
        return rows[0]

    def create(self, storage: StorageConfig) -> StorageConfig:
        """
        Insert a new storage and return it with its assigned id.

        Snowflake has no RETURNING clause, so the id is drawn from the
        sequence first and inserted explicitly.
        """
        if not storage.secret_access_key:
            raise ValueError("Secret access key cannot be empty")

        cursor = self._conn.cursor()
        try:
            cursor.execute("SELECT storages_id_seq.NEXTVAL")
            storage_id = int(cursor.fetchone()[0])

            placeholders = ", ".join(["%s"] * len(STORAGE_COLUMNS))
            cursor.execute(
                f"INSERT INTO storages ({', '.join(STORAGE_COLUMNS)}) VALUES ({placeholders})",
                (storage_id, *self._row_values(storage)),
            )
            self._conn.commit()
        except Exception as e:
            logger.error(
                "Failed to create storage",
                extra={"storage_name": storage.name, "error": str(e)}
            )
            raise
        finally:
            cursor.close()

        storage.id = storage_id
        logger.info("Created storage", extra={"storage_id": storage_id, "storage_name": storage.name})
        return storage

    def update(self, storage_id: int, changes: dict[str, Any]) -> StorageConfig:
        """
        Apply a partial update.

        Fields missing from `changes` keep their value. An empty or
        missing secret keeps the stored secret.
        """
        current = self.get(storage_id)
        updated = current.with_changes(**changes)

        cursor = self._conn.cursor()
        try:
            cursor.execute(
                """
                UPDATE storages SET
                    name = %s,
                    endpoint = %s,
                    region = %s,
                    access_key_id = %s,
                    secret_access_key = %s,
                    bucket = %s,
                    base_path = %s,
                    is_public = %s,
                    updated_at = %s
                WHERE id = %s
                """,
                (
                    updated.name,
                    updated.endpoint,
                    updated.region,
                    updated.access_key_id,
                    self._cipher.encrypt(updated.secret_access_key),
                    updated.bucket,
                    updated.base_path,
                    updated.is_public,
                    updated.updated_at,
                    storage_id,
                ),
            )
            self._conn.commit()
        finally:
            cursor.close()

        logger.info("Updated storage", extra={"storage_id": storage_id, "fields": sorted(changes)})
        return updated

    def delete(self, storage_id: int) -> None:
        cursor = self._conn.cursor()
        try:
            cursor.execute("DELETE FROM storages WHERE id = %s", (storage_id,))
            if cursor.rowcount == 0:
                raise StorageNotFoundError(f"Storage {storage_id} not found")
            self._conn.commit()
        finally:
            cursor.close()

        logger.info("Deleted storage", extra={"storage_id": storage_id})

    # -----------------------------------------------------------------------
    # Private Methods
    # -----------------------------------------------------------------------

    def _select(self, query: str, params: tuple = (), with_secret: bool = True) -> list[StorageConfig]:
        cursor = self._conn.cursor()
        try:
            cursor.execute(query, params)
            return [self._build_storage(row, with_secret) for row in cursor.fetchall()]
        finally:
            cursor.close()

    def _row_values(self, storage: StorageConfig) -> tuple:
        """Values for every column after id, in STORAGE_COLUMNS order."""
        return (
            storage.name,
            storage.endpoint,
            storage.region,
            storage.access_key_id,
            self._cipher.encrypt(storage.secret_access_key),
            storage.bucket,
            storage.base_path,
            storage.is_public,
            storage.created_at,
            storage.updated_at,
        )

    def _build_storage(self, row: tuple, with_secret: bool = True) -> StorageConfig:
        """
        StorageConfig from a row.

        Listings skip decryption, so one secret stored under a rotated
        key only breaks requests to that storage.
        """
        values = dict(zip(STORAGE_COLUMNS, row))
        secret = values["secret_access_key"] or ""
        return StorageConfig(
            id=int(values["id"]),
            name=values["name"],
            endpoint=values["endpoint"],
            region=values["region"] or "auto",
            access_key_id=values["access_key_id"],
            secret_access_key=self._cipher.decrypt(secret) if with_secret else "",
            bucket=values["bucket"],
            base_path=values["base_path"] or "",
            is_public=bool(values["is_public"]),
            created_at=values["created_at"] or datetime.now(timezone.utc),
            updated_at=values["updated_at"] or datetime.now(timezone.utc),
        )
