"""
Storage configuration endpoints.

The UI talks to a single collection URL, /api/storages:
- GET lists the storages the caller may see, plus whether they're admin
- POST creates a storage, or handles {"action": "login" | "logout"}
- PUT updates a storage (blank secret keeps the stored one)
- DELETE ?id= removes a storage

Secrets never leave the server: responses are built from
StorageConfig.public_view().
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, HTTPException, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ...config.settings import Settings
from ...core.files.models import StorageConfig
from ...infrastructure.snowflake.repositories.storages import StorageNotFoundError
from ..auth import issue_session_token, verify_credentials
from ..dependencies import (
    AdminRequired,
    ClientCacheDep,
    IsAdminDep,
    SettingsDep,
    StorageRepositoryDep,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class LoginRequest(BaseModel):
    action: str
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class StorageFields(BaseModel):
    """Editable storage fields, named the way the UI sends them."""
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    endpoint: Optional[str] = None
    region: Optional[str] = None
    access_key_id: Optional[str] = Field(None, alias="accessKeyId")
    secret_access_key: Optional[str] = Field(None, alias="secretAccessKey")
    bucket: Optional[str] = None
    base_path: Optional[str] = Field(None, alias="basePath")
    is_public: Optional[bool] = Field(None, alias="isPublic")

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class StorageCreateRequest(StorageFields):
    name: str
    endpoint: str
    access_key_id: str = Field(alias="accessKeyId")
    secret_access_key: str = Field(alias="secretAccessKey", min_length=1)
    bucket: str


class StorageUpdateRequest(StorageFields):
    id: int

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True, exclude={"id"})


class StorageView(BaseModel):
    id: int
    name: str
    endpoint: str
    region: str
    accessKeyId: str
    bucket: str
    basePath: str
    isPublic: bool


class StorageListResponse(BaseModel):
    storages: list[StorageView]
    isAdmin: bool


class StorageResponse(BaseModel):
    success: bool = True
    storage: StorageView


class SuccessResponse(BaseModel):
    success: bool = True


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    return f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get(
    "",
    response_model=StorageListResponse,
    summary="List storages",
    description="Admins see every storage, visitors only public ones.",
)
async def list_storages(
    is_admin: IsAdminDep,
    repository: StorageRepositoryDep,
) -> StorageListResponse:
    storages = repository.list_all() if is_admin else repository.list_public()
    return StorageListResponse(
        storages=[StorageView(**s.public_view()) for s in storages],
        isAdmin=is_admin,
    )


@router.post(
    "",
    status_code=status.HTTP_200_OK,
    summary="Create storage, log in or log out",
    responses={201: {"model": StorageResponse}, 401: {"description": "Bad credentials"}},
)
async def post_storages(
    response: Response,
    settings: SettingsDep,
    is_admin: IsAdminDep,
    repository: StorageRepositoryDep,
    payload: dict[str, Any] = Body(...),
):
    """
    Dispatch on the "action" field.

    login/logout manage the admin session cookie; a body without an
    action is a new storage definition (admin only).
    """
    action = payload.get("action")

    if action == "login":
        return _login(payload, response, settings)

    if action == "logout":
        response.delete_cookie(settings.session_cookie_name, path="/")
        logger.info("Admin logged out")
        return SuccessResponse()

    if action is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown action: {action}",
        )

    if not is_admin:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Administrator login required",
        )

    try:
        request = StorageCreateRequest.model_validate(payload)
        storage = StorageConfig(**request.changes())
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_validation_message(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    storage = repository.create(storage)
    response.status_code = status.HTTP_201_CREATED
    return StorageResponse(storage=StorageView(**storage.public_view()))


def _login(payload: dict[str, Any], response: Response, settings: Settings) -> SuccessResponse:
    try:
        login = LoginRequest.model_validate(payload)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_validation_message(e))

    if not verify_credentials(settings, login.username, login.password):
        logger.warning("Failed admin login", extra={"username": login.username})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    response.set_cookie(
        settings.session_cookie_name,
        issue_session_token(settings),
        max_age=settings.session_ttl_hours * 3600,
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
        path="/",
    )
    logger.info("Admin logged in", extra={"username": login.username})
    return SuccessResponse()


@router.put(
    "",
    response_model=StorageResponse,
    summary="Update storage",
    dependencies=[AdminRequired],
)
async def update_storage(
    request: StorageUpdateRequest,
    repository: StorageRepositoryDep,
    cache: ClientCacheDep,
) -> StorageResponse:
    try:
        storage = repository.update(request.id, request.changes())
    except StorageNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Storage not found")
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    cache.invalidate(request.id)
    return StorageResponse(storage=StorageView(**storage.public_view()))


@router.delete(
    "",
    response_model=SuccessResponse,
    summary="Delete storage",
    dependencies=[AdminRequired],
)
async def delete_storage(
    repository: StorageRepositoryDep,
    cache: ClientCacheDep,
    storage_id: int = Query(..., alias="id"),
) -> SuccessResponse:
    try:
        repository.delete(storage_id)
    except StorageNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Storage not found")

    cache.remove(storage_id)
    return SuccessResponse()
