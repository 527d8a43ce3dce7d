"""Catalog API main application module.

This module builds the FastAPI application and configures middleware,
routers, exception handlers and startup/shutdown of shared resources.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from catalog_api.api.attachments import router as attachments_router
from catalog_api.api.errors import setup_exception_handlers
from catalog_api.api.health import router as health_router
from catalog_api.api.items import router as items_router
from catalog_api.api.middleware import setup_middleware
from catalog_api.infrastructure.config import Settings, settings
from catalog_api.infrastructure.database import create_all
from catalog_api.infrastructure.identity import IdentityVerifier, StaticTokenVerifier
from catalog_api.infrastructure.logging import configure_logging
from catalog_api.infrastructure.resources import ResourceContext

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build shared resources on startup and release them on shutdown.

    Resources handed to create_app are used as-is and left open.
    """
    app_settings: Settings = app.state.settings
    logger.info(
        "Starting catalog API",
        version=app_settings.api_version,
        debug=app_settings.debug,
    )

    owned = getattr(app.state, "resources", None) is None
    if owned:
        app.state.resources = ResourceContext.from_settings(app_settings)
        if app_settings.debug:
            await create_all(app.state.resources.engine)

    yield

    logger.info("Shutting down catalog API")
    if owned:
        await app.state.resources.close()


def create_app(
    resources: ResourceContext | None = None,
    identity: IdentityVerifier | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        resources: Pre-built resources (tests). Built in the lifespan when omitted.
        identity: Identity verifier. Defaults to the static token verifier.

    Returns:
        Configured application.
    """
    app_settings = resources.settings if resources else settings
    configure_logging(app_settings.log_level)

    app = FastAPI(
        title="Catalog API",
        description="Catalog items with attachments over a cache-aside resource layer",
        version=app_settings.api_version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = app_settings
    app.state.resources = resources
    app.state.identity = identity or StaticTokenVerifier(app_settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request ID, identity, error handling
    setup_middleware(app)
    setup_exception_handlers(app)

    app.include_router(health_router, tags=["Health"])
    app.include_router(items_router)
    app.include_router(attachments_router)

    return app


app = create_app()
