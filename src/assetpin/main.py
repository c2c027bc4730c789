"""Main application entrypoint for AssetPin Engine."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from assetpin.api.dependencies import AppState
from assetpin.api.v1 import routes_health
from assetpin.api.v1.routes_upload import router as upload_router
from assetpin.core.config import Settings, settings
from assetpin.core.faults import install_fault_handlers
from assetpin.core.logging import setup_logging
from assetpin.core.middleware import HTTPErrorLoggingMiddleware
from assetpin.storage.base import ObjectStore

logger = logging.getLogger(__name__)


def create_app(app_settings: Settings = settings, store: Optional[ObjectStore] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        app_settings: Settings to wire the service with
        store: Object store to use instead of the configured backend

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    # Initialize logging first
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        install_fault_handlers(asyncio.get_running_loop())
        app_settings.assets_root.mkdir(parents=True, exist_ok=True)
        logger.info(
            "Service started",
            extra={
                "env": app_settings.ENV,
                "assets_root": str(app_settings.assets_root),
                "storage_backend": app_settings.STORAGE_BACKEND,
            },
        )
        yield
        logger.info("Service stopping")

    app = FastAPI(
        title=app_settings.SERVICE_NAME,
        version=app_settings.SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.assetpin = AppState(app_settings, store=store)

    app.add_middleware(HTTPErrorLoggingMiddleware)
    if app_settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=app_settings.cors_origins,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
            max_age=86400,
        )

    # Register routers
    app.include_router(routes_health.router, tags=["health"])
    app.include_router(upload_router)

    return app


# Export app instance for ASGI servers
app = create_app()


def run() -> None:
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_config=None)
