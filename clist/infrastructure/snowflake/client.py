"""
Snowflake database connection management.

Provides connection factory and context manager for Snowflake operations.
Includes mock mode with in-memory storage for local development.

Using the repository pattern means most code never touches this module
directly - it goes through StorageRepository which handles the translation
between domain models and database rows.
"""

import base64
import logging
from contextlib import contextmanager
from typing import Generator, Optional

from .repositories.storages import STORAGE_COLUMNS, SnowflakeConfig, SnowflakeConnection

logger = logging.getLogger(__name__)


class SnowflakeConnectionError(Exception):
    """Raised when Snowflake connection fails."""
    pass


def _der_private_key(pem_bytes: bytes) -> bytes:
    """
    Convert a PEM private key into the DER/PKCS8 bytes
    snowflake-connector expects for key-pair authentication.
    """
    from cryptography.hazmat.backends import default_backend
    from cryptography.hazmat.primitives import serialization

    private_key = serialization.load_pem_private_key(
        pem_bytes,
        password=None,  # No password on the key
        backend=default_backend()
    )

    return private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )


def _load_private_key(config: SnowflakeConfig) -> Optional[bytes]:
    """Private key from the file path or the base64 setting, if any."""
    if config.private_key_path:
        with open(config.private_key_path, 'rb') as key_file:
            return _der_private_key(key_file.read())
    if config.private_key_base64:
        return _der_private_key(base64.b64decode(config.private_key_base64))
    return None


@contextmanager
def get_snowflake_connection(config: SnowflakeConfig) -> Generator[SnowflakeConnection, None, None]:
    """
    Provide Snowflake connection with automatic cleanup.

    Supports both password and key-pair authentication:
    - If a private key (path or base64) is set, uses key-pair auth
    - Otherwise, uses password auth

    Usage:
        with get_snowflake_connection(config) as conn:
            cursor = conn.cursor()
            # do work
            conn.commit()
    """
    try:
        import snowflake.connector
    except ImportError:
        raise ImportError(
            "snowflake-connector-python is required. "
            "Install with: pip install snowflake-connector-python"
        )

    connect_params = {
        'account': config.account,
        'user': config.user,
        'database': config.database,
        'schema': config.schema,
        'warehouse': config.warehouse,
        'role': config.role,
        'client_session_keep_alive': True,
    }

    private_key = _load_private_key(config)
    if private_key:
        logger.info("Using key-pair authentication for Snowflake")
        connect_params['private_key'] = private_key
    elif config.password:
        logger.info("Using password authentication for Snowflake")
        connect_params['password'] = config.password
    else:
        raise SnowflakeConnectionError(
            "Either password or a private key must be provided"
        )

    try:
        conn = snowflake.connector.connect(**connect_params)
    except snowflake.connector.errors.DatabaseError as e:
        logger.error(
            "Snowflake connection failed",
            extra={"error": str(e), "account": config.account}
        )
        raise SnowflakeConnectionError(f"Database connection failed: {e}")

    logger.debug(
        "Established Snowflake connection",
        extra={
            "account": config.account,
            "database": config.database,
            "schema": config.schema,
        }
    )

    try:
        yield conn
    finally:
        try:
            conn.close()
            logger.debug("Closed Snowflake connection")
        except Exception as e:
            logger.warning(
                "Error closing Snowflake connection",
                extra={"error": str(e)}
            )


# ---------------------------------------------------------------------------
# Mock Connection for Local Development
# ---------------------------------------------------------------------------

class MockSnowflakeCursor:
    """
    Mock Snowflake cursor for testing.

    Implements just enough of the cursor interface to support
    StorageRepository without a real database. Statements are
    recognised by pattern, so only the queries the repository issues
    are understood.
    """

    def __init__(self, storage: dict) -> None:
        self._storage = storage
        self._results: list = []
        self._rowcount: int = 0

    def execute(self, query: str, params: Optional[tuple] = None) -> 'MockSnowflakeCursor':
        logger.debug(
            "Mock cursor execute",
            extra={"query": query[:100], "params": params}
        )

        query_upper = " ".join(query.upper().split())
        params = params or ()
        self._results = []
        self._rowcount = 0

        if query_upper.startswith('CREATE'):
            pass
        elif query_upper == 'SELECT 1':
            self._results = [(1,)]
        elif 'NEXTVAL' in query_upper:
            self._storage['sequence'] += 1
            self._results = [(self._storage['sequence'],)]
        elif query_upper.startswith('SELECT') and 'FROM STORAGES' in query_upper:
            self._handle_select(query_upper, params)
        elif query_upper.startswith('INSERT INTO STORAGES'):
            row = dict(zip(STORAGE_COLUMNS, params))
            self._storage['storages'][int(row['id'])] = row
            self._rowcount = 1
        elif query_upper.startswith('UPDATE STORAGES'):
            self._handle_update(params)
        elif query_upper.startswith('DELETE FROM STORAGES'):
            removed = self._storage['storages'].pop(int(params[0]), None)
            self._rowcount = 1 if removed else 0
        else:
            raise NotImplementedError(f"Mock cursor does not understand: {query[:60]}")

        return self

    def _handle_select(self, query: str, params: tuple) -> None:
        rows = sorted(self._storage['storages'].values(), key=lambda r: r['id'])

        if 'WHERE ID = %S' in query:
            rows = [r for r in rows if r['id'] == int(params[0])]
        elif 'WHERE IS_PUBLIC = TRUE' in query:
            rows = [r for r in rows if r['is_public']]

        self._results = [tuple(r[c] for c in STORAGE_COLUMNS) for r in rows]

    def _handle_update(self, params: tuple) -> None:
        storage_id = int(params[-1])
        row = self._storage['storages'].get(storage_id)
        if row is None:
            return

        # Same order as the SET clause in StorageRepository.update
        updated_columns = (
            'name', 'endpoint', 'region', 'access_key_id', 'secret_access_key',
            'bucket', 'base_path', 'is_public', 'updated_at',
        )
        row.update(zip(updated_columns, params[:-1]))
        self._rowcount = 1

    def fetchone(self):
        if not self._results:
            return None
        return self._results[0]

    def fetchall(self) -> list:
        return list(self._results)

    def close(self) -> None:
        """Close cursor (no-op for mock)."""
        pass

    @property
    def rowcount(self) -> int:
        return self._rowcount


class MockSnowflakeConnection:
    """
    Mock Snowflake connection for local development.

    Stores rows in memory so the full API works without a database.
    Not suitable for production, but fine for local development,
    unit tests and CI.
    """

    def __init__(self) -> None:
        self._storage: dict = {
            'storages': {},
            'sequence': 0,
        }

        logger.info("Initialized mock Snowflake connection (in-memory)")

    def cursor(self) -> MockSnowflakeCursor:
        return MockSnowflakeCursor(self._storage)

    def commit(self) -> None:
        """Commit transaction (no-op for mock, always auto-commits)."""
        logger.debug("Mock connection commit")

    def rollback(self) -> None:
        logger.debug("Mock connection rollback")

    def close(self) -> None:
        logger.debug("Mock connection close")

    def _clear(self) -> None:
        """Clear all mock storage (for test cleanup)."""
        self._storage['storages'].clear()
        self._storage['sequence'] = 0


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

@contextmanager
def create_snowflake_connection(
    config: Optional[SnowflakeConfig] = None,
    mock_mode: bool = False,
) -> Generator[SnowflakeConnection, None, None]:
    """
    Create Snowflake connection based on configuration.

    Args:
        config: Snowflake configuration (required if not mock_mode)
        mock_mode: If True, return mock connection for testing

    Yields:
        SnowflakeConnection implementation (real or mock)
    """
    if mock_mode:
        conn = MockSnowflakeConnection()
        try:
            yield conn
        finally:
            conn.close()
    else:
        if config is None:
            raise ValueError("config is required when not in mock mode")

        with get_snowflake_connection(config) as conn:
            yield conn
