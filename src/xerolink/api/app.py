"""FastAPI application factory for the xerolink API."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from structlog import get_logger

from xerolink import __version__
from xerolink.api.middleware.errors import setup_error_handlers
from xerolink.api.middleware.request_id import RequestIDMiddleware
from xerolink.api.routes.health import router as health_router
from xerolink.api.routes.tenants import router as tenants_router
from xerolink.api.routes.xero import router as xero_router
from xerolink.config.settings import Settings, get_settings
from xerolink.core.logging import setup_logging
from xerolink.service import XeroCoordinator


logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create the coordinator on startup unless one was injected."""
    settings: Settings = app.state.settings
    owned = getattr(app.state, "coordinator", None) is None
    if owned:
        app.state.coordinator = XeroCoordinator(settings)
    await app.state.coordinator.init()
    logger.info("server_start", url=settings.server_url)

    yield

    logger.debug("server_stop")
    if owned:
        await app.state.coordinator.close()


def create_app(
    settings: Settings | None = None,
    coordinator: XeroCoordinator | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Optional settings override. If None, uses get_settings().
        coordinator: Optional pre-built coordinator (its lifecycle stays with the caller)
    """
    if settings is None:
        settings = coordinator.settings if coordinator else get_settings()

    if not structlog.is_configured():
        setup_logging(settings.server.log_level, json_logs=settings.server.log_json)

    app = FastAPI(
        title="xerolink",
        description="Multi-tenant Xero access coordinator",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    if coordinator is not None:
        app.state.coordinator = coordinator

    setup_error_handlers(app)
    app.add_middleware(RequestIDMiddleware)

    app.include_router(health_router)
    app.include_router(xero_router)
    app.include_router(tenants_router)

    return app
