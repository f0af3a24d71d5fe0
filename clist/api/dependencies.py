"""
FastAPI dependency injection.

Dependencies provide instances of services, clients, and configuration
to route handlers. Using dependency injection means:
- Routes don't instantiate their own dependencies (easier to test)
- Dependencies can be overridden in tests
- Resource lifecycle (database connections) is managed per request

Each dependency is a function that FastAPI calls when needed.
"""

import logging
from contextlib import contextmanager
from typing import Annotated, Generator, Iterator, Optional

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import APIKeyCookie, HTTPAuthorizationCredentials, HTTPBearer

from ..config.settings import Settings, get_settings
from ..core.files.browser import FileBrowser
from ..core.files.models import StorageConfig
from ..infrastructure.http.fetcher import FetcherConfig, RemoteFetcher
from ..infrastructure.secrets import SecretCipher
from ..infrastructure.snowflake.client import MockSnowflakeConnection, create_snowflake_connection
from ..infrastructure.snowflake.repositories.storages import (
    SnowflakeConfig,
    StorageNotFoundError,
    StorageRepository,
)
from ..infrastructure.storage.client import StorageClientCache
from .auth import verify_session_token

logger = logging.getLogger(__name__)

# Global mock instances (shared across requests so data persists)
_mock_snowflake_connection: Optional[MockSnowflakeConnection] = None
_client_cache: Optional[StorageClientCache] = None


def reset_state() -> None:
    """Drop shared mock connection and cached clients (used by tests)."""
    global _mock_snowflake_connection, _client_cache
    _mock_snowflake_connection = None
    _client_cache = None


def snowflake_config(settings: Settings) -> SnowflakeConfig:
    return SnowflakeConfig(
        account=settings.snowflake_account,
        user=settings.snowflake_user,
        password=settings.snowflake_password or None,
        private_key_path=settings.snowflake_private_key_path,
        private_key_base64=settings.snowflake_private_key_base64,
        database=settings.snowflake_database,
        schema=settings.snowflake_schema,
        warehouse=settings.snowflake_warehouse,
        role=settings.snowflake_role,
    )


def shared_mock_connection() -> MockSnowflakeConnection:
    global _mock_snowflake_connection

    if _mock_snowflake_connection is None:
        _mock_snowflake_connection = MockSnowflakeConnection()
        logger.info("Created shared mock Snowflake connection")
    return _mock_snowflake_connection


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

# Session token security schemes: the UI's cookie, or a Bearer header for scripts
session_cookie = APIKeyCookie(name=get_settings().session_cookie_name, auto_error=False)
bearer_token = HTTPBearer(auto_error=False)


def get_is_admin(
    settings: Annotated[Settings, Depends(get_settings)],
    cookie_token: Optional[str] = Security(session_cookie),
    bearer: Optional[HTTPAuthorizationCredentials] = Security(bearer_token),
) -> bool:
    token = cookie_token or (bearer.credentials if bearer else None)
    return verify_session_token(settings, token)


def require_admin(
    is_admin: Annotated[bool, Depends(get_is_admin)],
    request: Request,
) -> None:
    """Reject the request with 401 unless an admin session is present."""
    if not is_admin:
        logger.warning(
            "Admin-only request without valid session",
            extra={"path": request.url.path, "method": request.method}
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Administrator login required",
        )


# ---------------------------------------------------------------------------
# Service Dependencies
# ---------------------------------------------------------------------------

@contextmanager
def open_storage_repository(settings: Settings) -> Iterator[StorageRepository]:
    """
    StorageRepository over a fresh connection, closed on exit.

    In mock mode the same in-memory connection is reused so that data
    persists for the process lifetime. Also used outside requests
    (startup schema creation, readiness checks).
    """
    cipher = SecretCipher(settings.credentials_encryption_key or None)

    if settings.snowflake_mock_mode:
        yield StorageRepository(shared_mock_connection(), cipher)
    else:
        with create_snowflake_connection(config=snowflake_config(settings)) as conn:
            logger.debug("Created StorageRepository with Snowflake connection")
            yield StorageRepository(conn, cipher)


def get_storage_repository(
    settings: Annotated[Settings, Depends(get_settings)],
) -> Generator[StorageRepository, None, None]:
    """
    Provide StorageRepository with database connection.

    This is a generator so the connection is closed after the request.
    """
    with open_storage_repository(settings) as repository:
        yield repository

def get_client_cache(
    settings: Annotated[Settings, Depends(get_settings)],
) -> StorageClientCache:
    """Process-wide cache of per-storage clients."""
    global _client_cache

    if _client_cache is None:
        _client_cache = StorageClientCache(mock_mode=settings.storage_mock_mode)
        logger.info(
            "Created storage client cache",
            extra={"mock_mode": settings.storage_mock_mode}
        )
    return _client_cache


def get_fetcher(
    settings: Annotated[Settings, Depends(get_settings)],
) -> RemoteFetcher:
    return RemoteFetcher(FetcherConfig(
        timeout_seconds=settings.offline_timeout_seconds,
        max_size_bytes=settings.offline_max_size_bytes,
        max_retries=settings.offline_max_retries,
        user_agent=settings.offline_user_agent,
    ))


def get_storage(
    storage_id: int,
    repository: Annotated[StorageRepository, Depends(get_storage_repository)],
    is_admin: Annotated[bool, Depends(get_is_admin)],
) -> StorageConfig:
    """
    Resolve the storage named in the URL.

    Private storages answer 404 to visitors so their existence isn't
    revealed.
    """
    try:
        storage = repository.get(storage_id)
    except StorageNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Storage not found",
        )

    if not storage.is_public and not is_admin:
        logger.info("Private storage requested without admin session", extra={"storage_id": storage_id})
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Storage not found",
        )
    return storage


def get_file_browser(
    storage: Annotated[StorageConfig, Depends(get_storage)],
    cache: Annotated[StorageClientCache, Depends(get_client_cache)],
) -> FileBrowser:
    return FileBrowser(storage, cache.get(storage))


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

# These type aliases make route signatures cleaner
SettingsDep = Annotated[Settings, Depends(get_settings)]
IsAdminDep = Annotated[bool, Depends(get_is_admin)]
AdminRequired = Depends(require_admin)
StorageRepositoryDep = Annotated[StorageRepository, Depends(get_storage_repository)]
ClientCacheDep = Annotated[StorageClientCache, Depends(get_client_cache)]
FetcherDep = Annotated[RemoteFetcher, Depends(get_fetcher)]
FileBrowserDep = Annotated[FileBrowser, Depends(get_file_browser)]
