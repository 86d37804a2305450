"""FastAPI application factory and main app.

This module creates the FastAPI application with all routers and
dependency injection configured. Routes are thin proxies to the core
service modules.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from isoforge import __version__
from isoforge.builds.storage import ArtifactStore
from isoforge.builds.trigger import build_trigger
from isoforge.catalog import get_catalog
from isoforge.config import get_settings
from isoforge.db import create_all_tables, get_engine, get_session_factory
from isoforge.kernel.ai import build_text_generator
from web.routers import builds, catalog, config, health

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager.

    Configures logging, initializes database tables and wires the shared
    services into ``app.state``.
    """
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)

    engine = get_engine(settings.db_url)
    create_all_tables(engine)
    app.state.session_factory = get_session_factory(engine)
    app.state.settings = settings
    app.state.artifact_store = ArtifactStore(settings.storage_dir)
    app.state.catalog = get_catalog(settings)
    app.state.text_generator = build_text_generator(settings)
    app.state.build_trigger = build_trigger(settings)
    logger.info("isoforge API started (store=%s)", settings.storage_dir)
    yield
    engine.dispose()


def include_routers(application: FastAPI) -> None:
    """Attach all API routers to an application."""
    application.include_router(health.router, tags=["health"])
    application.include_router(config.router, prefix="/config", tags=["config"])
    application.include_router(catalog.router, prefix="/catalog", tags=["catalog"])
    application.include_router(builds.router, prefix="/builds", tags=["builds"])


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application.
    """
    application = FastAPI(
        title="isoforge API",
        description="HTTP API for generating, validating and tracking custom "
        "Linux ISO builds",
        version=__version__,
        lifespan=lifespan,
    )
    include_routers(application)
    return application


# Create the default application instance
app = create_app()
