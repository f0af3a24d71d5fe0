"""
FastAPI application entry point.

This module creates and configures the FastAPI application.
Using an application factory pattern (create_app function) because:
- Easier to test with different configurations
- Explicit about initialization order

For local development:
    uvicorn clist.main:app --reload

For production:
    gunicorn clist.main:app -w 4 -k uvicorn.workers.UvicornWorker
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .api.dependencies import open_storage_repository
from .api.routes import files, health, storages
from .config.settings import get_settings

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=get_settings().log_level.upper(),
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    On startup the configuration is checked and the storages table is
    created if needed. Neither failure stops the process: /health/ready
    reports them instead, so the service can be inspected while broken.
    """
    # Startup
    settings = get_settings()

    logger.info(
        "CList API starting",
        extra={
            "version": __version__,
            "mock_mode": {
                "snowflake": settings.snowflake_mock_mode,
                "storage": settings.storage_mock_mode,
            }
        }
    )

    missing_fields = settings.validate_required_fields()
    if missing_fields:
        logger.error(
            "Missing required configuration",
            extra={"missing_fields": missing_fields}
        )

    try:
        with open_storage_repository(settings) as repository:
            repository.ensure_schema()
    except Exception as e:
        logger.error("Could not prepare storage schema", extra={"error": str(e)}, exc_info=e)

    yield

    # Shutdown
    logger.info("CList API shutting down")


def create_app() -> FastAPI:
    """
    Application factory.

    Creates and configures the FastAPI application. Tests call it again
    after changing environment variables and clearing get_settings().
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="""
        Browse several S3-compatible storages (AWS S3, Cloudflare R2,
        Aliyun OSS, Tencent COS, MinIO) from one place.

        ## Authentication

        Reading public storages needs no login. Everything else requires
        the administrator session obtained from
        `POST /api/storages {"action": "login", ...}`, sent back as a
        cookie or as `Authorization: Bearer <token>`.

        ## Endpoints

        - `/api/storages`: list, create, update and delete storages
        - `/api/files/{storage_id}/{key}`: list, download, upload,
          delete, create folders and fetch remote URLs
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    # Credentials are allowed because the admin session is a cookie
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "Content-Range", "Accept-Ranges"],
    )

    # Include routers
    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"],
    )

    app.include_router(
        storages.router,
        prefix="/api/storages",
        tags=["Storages"],
    )

    app.include_router(
        files.router,
        prefix="/api/files",
        tags=["Files"],
    )

    @app.get("/", include_in_schema=False)
    async def root():
        """Site information the UI shows in its header."""
        return {
            "siteTitle": settings.site_title,
            "siteAnnouncement": settings.site_announcement,
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
        }

    # The UI reads error messages from {"error": ...}. Registered for the
    # Starlette base class so unknown routes (404/405) render the same way.
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = "Invalid request"
        if errors:
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{field}: {first.get('msg')}" if field else first.get("msg", message)
        return JSONResponse(status_code=422, content={"error": message})

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Catch-all exception handler.

        In production, this prevents stack traces from leaking to clients.
        We log the full error server-side but return a generic message.
        """
        logger.error(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error": str(exc),
            },
            exc_info=exc,
        )

        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error"}
        )

    logger.info(
        "FastAPI application created",
        extra={
            "title": settings.api_title,
            "version": settings.api_version,
        }
    )

    return app


# Create the application instance
# This is what uvicorn/gunicorn will import
app = create_app()


# For debugging/development
if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "clist.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
