"""
FastAPI Application Setup.

Main application factory for the DocVault REST API.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from docvault import __version__
from docvault.api.routes import documentation, health
from docvault.api.schemas.exceptions import APIException, ServiceUnavailableError
from docvault.artifacts.lifecycle import ArtifactLifecycleManager
from docvault.config import DocVaultConfig, get_config
from docvault.core.exceptions import ConfigurationError, ObjectStoreError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for startup and shutdown events.

    Builds the lifecycle manager when none was injected and runs the GC
    worker for the lifetime of the application.
    """
    config: DocVaultConfig = app.state.config
    logger.info("DocVault API starting up...")
    logger.info(f"Version: {__version__}")

    if app.state.manager is None:
        app.state.manager = ArtifactLifecycleManager.from_config(config)
    manager: ArtifactLifecycleManager = app.state.manager
    logger.info(f"Serving runtime versions: {', '.join(manager.runtime.accepted)}")

    if config.gc_worker_enabled:
        manager.start_gc_worker()
        logger.info("GC worker started")

    yield

    logger.info("DocVault API shutting down...")
    if config.gc_worker_enabled:
        manager.stop_gc_worker(timeout=5.0)


def create_app(
    manager: ArtifactLifecycleManager | None = None,
    config: DocVaultConfig | None = None,
    title: str = "DocVault API",
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        manager: Lifecycle manager to serve from (default: built from config on startup)
        config: Configuration (default: loaded from environment)
        title: Application title for OpenAPI docs

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title=title,
        description="Versioned documentation artifact storage",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.config = config or get_config()
    app.state.manager = manager

    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"],
    )
    app.include_router(
        documentation.router,
        prefix="/documentation",
        tags=["Documentation"],
    )

    @app.exception_handler(APIException)
    async def api_exception_handler(request, exc: APIException) -> JSONResponse:
        """Handle API exceptions with proper error responses."""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "type": exc.error_type,
                    "message": exc.message,
                    "detail": exc.detail,
                }
            },
        )

    @app.exception_handler(ObjectStoreError)
    async def store_exception_handler(request, exc: ObjectStoreError) -> JSONResponse:
        """Store failures that survived retries are reported as unavailable."""
        logger.warning(f"Object store error: {exc}")
        error = ServiceUnavailableError(detail=str(exc))
        return await api_exception_handler(request, error)

    @app.exception_handler(ConfigurationError)
    async def configuration_exception_handler(
        request, exc: ConfigurationError
    ) -> JSONResponse:
        """The service cannot answer the request until it is configured."""
        logger.error(f"Configuration error: {exc}")
        error = ServiceUnavailableError(
            message="Service is not configured for this request",
            detail=f"{exc.config_key}: {exc}" if exc.config_key else str(exc),
        )
        return await api_exception_handler(request, error)

    @app.exception_handler(Exception)
    async def general_exception_handler(request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "type": "internal_error",
                    "message": "An unexpected error occurred",
                    "detail": str(exc) if logger.isEnabledFor(logging.DEBUG) else None,
                }
            },
        )

    @app.get("/", tags=["Root"])
    async def root() -> dict[str, object]:
        """Root endpoint with API information."""
        return {
            "name": "DocVault API",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
        }

    return app
