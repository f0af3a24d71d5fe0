"""
File browsing endpoints.

Every operation addresses /api/files/{storage_id}/{key}, where key is a
path relative to the storage's base path (empty for its root). The
"action" query parameter picks the operation:

GET     list | download (default) | info
PUT     upload the raw request body to key
DELETE  delete the file at key, or the folder with action=rmdir
POST    mkdir | fetch (offline download into the folder at key)

Reads are allowed on public storages for everyone; every mutation
requires an admin session.
"""

import logging
import tempfile
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional
from urllib.parse import quote

from fastapi import APIRouter, Body, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ...core.files.filetypes import format_bytes, is_previewable
from ...core.files.models import ObjectContent, StorageObject
from ...core.files.paths import InvalidPathError, basename, breadcrumbs, normalize_path
from ...infrastructure.http.fetcher import FetchError, FetchTooLargeError, InvalidURLError
from ...infrastructure.storage.client import InvalidRangeError, ObjectNotFoundError, StorageError
from ..dependencies import AdminRequired, FetcherDep, FileBrowserDep, SettingsDep

logger = logging.getLogger(__name__)

router = APIRouter()

# Uploads are held in memory up to this size, then spooled to disk
UPLOAD_SPOOL_MAX_MEMORY = 8 * 1024 * 1024


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class ObjectView(BaseModel):
    key: str
    name: str
    size: int
    lastModified: Optional[datetime] = None
    isDirectory: bool


class Breadcrumb(BaseModel):
    name: str
    path: str


class ListResponse(BaseModel):
    objects: list[ObjectView]
    path: str
    breadcrumbs: list[Breadcrumb]


class InfoResponse(BaseModel):
    key: str
    name: str
    size: int
    sizeFormatted: str
    contentType: str
    etag: Optional[str] = None
    lastModified: Optional[datetime] = None
    fileType: str
    mimeType: str
    language: str
    previewable: bool


class UploadResponse(BaseModel):
    success: bool = True
    key: str


class DeleteResponse(BaseModel):
    success: bool = True
    deleted: int = Field(default=1, description="Number of objects removed")


class FetchRequest(BaseModel):
    url: str = Field(min_length=1)
    filename: Optional[str] = None


class FetchResponse(BaseModel):
    success: bool = True
    filename: str
    size: int
    key: str


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------

@contextmanager
def _file_errors(action: str, storage_id: int, key: str) -> Iterator[None]:
    """Translate domain errors raised inside the block into HTTP errors."""
    try:
        yield
    except InvalidPathError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ObjectNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    except InvalidRangeError as e:
        raise HTTPException(status_code=status.HTTP_416_RANGE_NOT_SATISFIABLE, detail=str(e))
    except FetchTooLargeError as e:
        raise HTTPException(status_code=status.HTTP_413_CONTENT_TOO_LARGE, detail=str(e))
    except InvalidURLError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except (FetchError, StorageError) as e:
        logger.error(
            f"Failed to {action}",
            extra={"storage_id": storage_id, "key": key, "error": str(e)}
        )
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


def _object_view(obj: StorageObject) -> ObjectView:
    return ObjectView(
        key=obj.key,
        name=obj.name,
        size=obj.size,
        lastModified=obj.last_modified,
        isDirectory=obj.is_directory,
    )


def content_disposition(filename: str, inline: bool = False) -> str:
    """
    Content-Disposition value that survives non-ASCII names.

    Old clients read the ASCII `filename`; everything current prefers
    the RFC 5987 `filename*`.
    """
    disposition = "inline" if inline else "attachment"
    fallback = filename.encode("ascii", "replace").decode().replace('"', "_").replace("?", "_")
    return f"{disposition}; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


def _stream_response(content: ObjectContent, inline: bool) -> StreamingResponse:
    metadata = content.metadata
    headers = {
        "Content-Disposition": content_disposition(basename(metadata.key), inline),
        "Content-Length": str(content.content_length),
        "Accept-Ranges": "bytes",
    }
    if metadata.etag:
        headers["ETag"] = metadata.etag
    if metadata.last_modified:
        headers["Last-Modified"] = metadata.last_modified.strftime("%a, %d %b %Y %H:%M:%S GMT")
    if content.is_partial:
        headers["Content-Range"] = content.content_range

    return StreamingResponse(
        content.body,
        status_code=status.HTTP_206_PARTIAL_CONTENT if content.is_partial else status.HTTP_200_OK,
        media_type=metadata.content_type,
        headers=headers,
    )


async def _spool_request_body(request: Request, max_bytes: int):
    """
    Copy the request body into a spooled temporary file.

    Returns (file, size) with the file rewound. Bodies over max_bytes
    are rejected with 413, from Content-Length when the client sends it
    and otherwise as soon as the limit is crossed.
    """
    declared = request.headers.get("Content-Length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_CONTENT_TOO_LARGE,
            detail=f"File exceeds the {format_bytes(max_bytes)} upload limit",
        )

    spool = tempfile.SpooledTemporaryFile(max_size=UPLOAD_SPOOL_MAX_MEMORY)
    size = 0
    try:
        async for chunk in request.stream():
            size += len(chunk)
            if size > max_bytes:
                raise HTTPException(
                    status_code=status.HTTP_413_CONTENT_TOO_LARGE,
                    detail=f"File exceeds the {format_bytes(max_bytes)} upload limit",
                )
            spool.write(chunk)
    except Exception:
        spool.close()
        raise

    spool.seek(0)
    return spool, size


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get(
    "/{storage_id}",
    summary="Browse storage root",
    include_in_schema=False,
)
@router.get(
    "/{storage_id}/{key:path}",
    summary="List, download or describe",
    responses={
        206: {"description": "Partial content for Range requests"},
        404: {"description": "Storage or file not found"},
        416: {"description": "Range not satisfiable"},
    },
)
async def read_files(
    storage_id: int,
    request: Request,
    browser: FileBrowserDep,
    key: str = "",
    action: str = Query("download", pattern="^(list|download|info)$"),
    inline: Optional[bool] = Query(
        None,
        description="Force Content-Disposition inline (1) or attachment (0). Previewable types default to inline.",
    ),
):
    with _file_errors(action, storage_id, key):
        if action == "list":
            path = normalize_path(key)
            objects = await browser.list(path)
            return ListResponse(
                objects=[_object_view(obj) for obj in objects],
                path=path,
                breadcrumbs=[Breadcrumb(name=name, path=p) for name, p in breadcrumbs(path)],
            )

        if action == "info":
            metadata, info = await browser.describe(key)
            return InfoResponse(
                key=metadata.key,
                name=basename(metadata.key),
                size=metadata.size,
                sizeFormatted=format_bytes(metadata.size),
                contentType=metadata.content_type,
                etag=metadata.etag,
                lastModified=metadata.last_modified,
                fileType=info.file_type.value,
                mimeType=info.mime_type,
                language=info.language,
                previewable=info.previewable,
            )

        content = await browser.open(key, request.headers.get("Range"))

    # The preview pane embeds download URLs directly (PDF iframe, media tags)
    if inline is None:
        inline = is_previewable(content.metadata.key)

    logger.info(
        "Serving file",
        extra={
            "storage_id": storage_id,
            "key": content.metadata.key,
            "size_bytes": content.content_length,
            "partial": content.is_partial,
        }
    )
    return _stream_response(content, inline)


@router.put(
    "/{storage_id}/{key:path}",
    response_model=UploadResponse,
    summary="Upload file",
    description="Stores the raw request body at key. Content-Type is kept, or guessed from the name.",
    dependencies=[AdminRequired],
)
async def upload_file(
    storage_id: int,
    key: str,
    request: Request,
    browser: FileBrowserDep,
    settings: SettingsDep,
) -> UploadResponse:
    spool, size = await _spool_request_body(request, settings.max_upload_size_bytes)
    try:
        with _file_errors("upload", storage_id, key):
            path = await browser.upload(
                key,
                spool,
                content_type=request.headers.get("Content-Type"),
                content_length=size,
            )
    finally:
        spool.close()

    return UploadResponse(key=path)


@router.delete(
    "/{storage_id}/{key:path}",
    response_model=DeleteResponse,
    summary="Delete file or folder",
    dependencies=[AdminRequired],
)
async def delete_files(
    storage_id: int,
    key: str,
    browser: FileBrowserDep,
    action: Optional[str] = Query(None, pattern="^rmdir$"),
) -> DeleteResponse:
    with _file_errors("delete", storage_id, key):
        if action == "rmdir":
            return DeleteResponse(deleted=await browser.delete_folder(key))

        await browser.delete_file(key)
        return DeleteResponse()


@router.post(
    "/{storage_id}",
    summary="Offline download into storage root",
    include_in_schema=False,
    dependencies=[AdminRequired],
)
@router.post(
    "/{storage_id}/{key:path}",
    summary="Create folder or fetch a URL",
    description=(
        "action=mkdir creates the folder named by key. "
        "action=fetch downloads body.url into the folder at key."
    ),
    responses={413: {"description": "Remote file too large"}, 502: {"description": "Remote or storage failure"}},
    dependencies=[AdminRequired],
)
async def post_files(
    storage_id: int,
    browser: FileBrowserDep,
    fetcher: FetcherDep,
    key: str = "",
    action: str = Query(..., pattern="^(mkdir|fetch)$"),
    payload: Optional[FetchRequest] = Body(None),
):
    with _file_errors(action, storage_id, key):
        if action == "mkdir":
            path = await browser.mkdir(key)
            return UploadResponse(key=path)

        if payload is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="A url is required for offline download",
            )

        result = await browser.fetch(key, payload.url, fetcher, payload.filename)

    return FetchResponse(
        filename=result.filename,
        size=result.size,
        key=result.key,
    )
