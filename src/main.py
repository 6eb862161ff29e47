"""
FastAPI application entry point.

This module creates and configures the FastAPI application.
Using an application factory pattern (create_app function) because:
- Easier to test with different configurations
- Explicit about initialization order

For local development:
    uvicorn src.main:app --reload

For production:
    gunicorn src.main:app -w 4 -k uvicorn.workers.UvicornWorker
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.routes import health, media
from .config.settings import get_settings
from .infrastructure.media import create_media_router

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

    Builds the media router (and its HTTP connection pools) on startup
    and closes them on shutdown.
    """
    # Startup
    settings = get_settings()

    logger.info(
        "Media ingestion API starting",
        extra={
            "version": settings.api_version,
            "mock_mode": {
                "r2": settings.cloudflare_r2_mock_mode,
            }
        }
    )

    # Validate configuration
    missing_fields = settings.validate_required_fields()
    if missing_fields:
        # Backends without credentials report not_configured per upload
        logger.error(
            "Missing required configuration",
            extra={"missing_fields": missing_fields}
        )

    app.state.media_router = create_media_router(settings)

    yield

    # Shutdown
    logger.info("Media ingestion API shutting down")
    await app.state.media_router.aclose()


def create_app() -> FastAPI:
    """
    Application factory.

    Creates and configures the FastAPI application.
    """
    settings = get_settings()

    # Create FastAPI instance
    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="""
        Media ingestion for the trick catalog.

        ## Features

        - Videos go to Cloudflare Stream over resumable (tus) upload
        - Photos go to Cloudflare Images
        - Everything else goes to Cloudflare R2

        ## Authentication

        All media endpoints require an API key provided in the `X-API-Key` header.

        ## Endpoints

        1. **Upload**: `POST /api/v1/media`
           - Multipart form with `file`, `owner_id`, `record_id`
           - Returns the canonical URL to store on the record

        2. **Delete**: `DELETE /api/v1/media?url=...`
           - Removes the object behind a previously returned URL
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    # Configure allowed origins via CORS_ORIGINS environment variable
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"],
    )

    app.include_router(
        media.router,
        prefix="/api/v1/media",
        tags=["Media"],
    )

    # Root endpoint
    @app.get("/", include_in_schema=False)
    async def root():
        """Root endpoint - redirect to docs."""
        return {
            "message": "Media Ingestion API",
            "version": settings.api_version,
            "docs": "/docs",
            "health": "/health",
        }

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        """
        Catch-all exception handler.

        Logs the full error server-side but returns a generic message.
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
            content={
                "detail": "Internal server error. Please contact support if this persists."
            }
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
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
