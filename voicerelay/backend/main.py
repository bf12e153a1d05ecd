"""
FastAPI Application Entry Point.

Serves the client relay socket, health checks, and the static client page.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from voicerelay.backend.api import health
from voicerelay.backend.api.realtime import build_realtime_router
from voicerelay.backend.core.config import find_project_root, get_app_config
from voicerelay.backend.core.exception_handlers import register_exception_handlers
from voicerelay.backend.core.logging import get_logger, setup_logging
from voicerelay.backend.core.middleware import RequestContextMiddleware

logger = get_logger(__name__)

_app: FastAPI | None = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    app_config = get_app_config()
    setup_logging(level=app_config.logging.level)

    if app_config.features.startup_checks_enabled:
        from voicerelay.backend.core.startup_checks import run_startup_checks
        run_startup_checks()

    server = app_config.application.server
    logger.info(
        "Server is listening",
        extra={
            "app_name": app_config.application.name,
            "env": app_config.application.environment,
            "port": server.port,
            "ws_path": app_config.realtime.client.path,
        },
    )
    yield
    logger.info("Application shutting down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app_config = get_app_config()
    app_settings = app_config.application
    docs_enabled = app_settings.debug or app_settings.docs_enabled

    app = FastAPI(
        title=app_settings.name,
        description=app_settings.description,
        version=app_settings.version,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        lifespan=lifespan,
    )

    app.add_middleware(RequestContextMiddleware)

    cors_origins = app_settings.cors.origins
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["health"])
    app.include_router(build_realtime_router(app_config.realtime.client.path))

    # Mounted last: a mount at "/" would otherwise shadow the routes above.
    if app_config.features.static_files_enabled:
        _mount_static_files(app, app_config)

    return app


def _mount_static_files(app: FastAPI, app_config) -> None:
    """Serve the client page from the configured directory, if it exists."""
    static = app_config.application.static
    directory = Path(static.directory)
    if not directory.is_absolute():
        directory = find_project_root() / directory

    if not directory.is_dir():
        logger.warning("Static directory not found, skipping", extra={"directory": str(directory)})
        return

    app.mount(static.mount_path, StaticFiles(directory=directory, html=True), name="static")
    logger.debug("Static files mounted", extra={"directory": str(directory), "path": static.mount_path})


def get_app() -> FastAPI:
    """
    Get the application instance (lazy initialization).

    Use this instead of importing `app` directly to avoid
    import-time configuration errors.
    """
    global _app
    if _app is None:
        _app = create_app()
    return _app


# For uvicorn: `uvicorn voicerelay.backend.main:app`
def __getattr__(name: str) -> FastAPI:
    """Support lazy access to `app` for uvicorn compatibility."""
    if name == "app":
        return get_app()
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
