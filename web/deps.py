"""Dependencies for FastAPI route handlers.

Provides the database session and the application-wide services created in
the lifespan (settings, artifact store, catalog, text generator, build
trigger) to route handlers via FastAPI dependency injection.

Transaction boundaries for ``get_db`` are managed here:
- Session is created at request start
- On success (no exception): session is committed automatically
- On exception: session is rolled back automatically
- Session is closed after request completes
"""

from __future__ import annotations

from collections.abc import Generator
from typing import Any

from fastapi import Depends, Request
from sqlalchemy.orm import Session, sessionmaker

from isoforge.builds.storage import ArtifactStore
from isoforge.builds.trigger import BuildTrigger
from isoforge.catalog.models import PackageCatalog
from isoforge.config import Settings
from isoforge.kernel.ai import TextGenerator


def get_session_factory(request: Request) -> sessionmaker[Session]:
    """Get session factory from app state.

    Args:
        request: FastAPI request object.

    Returns:
        SQLAlchemy session factory.
    """
    factory: Any = request.app.state.session_factory
    return factory  # type: ignore[no-any-return]


def get_db(
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
) -> Generator[Session, None, None]:
    """Provide a database session for a request.

    Yields:
        Database session.
    """
    session = session_factory()
    try:
        yield session
        # Commit on success - only reached if no exception was raised
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_app_settings(request: Request) -> Settings:
    """Settings the application was started with."""
    settings: Settings = request.app.state.settings
    return settings


def get_store(request: Request) -> ArtifactStore:
    """Artifact store shared by all requests."""
    store: ArtifactStore = request.app.state.artifact_store
    return store


def get_catalog(request: Request) -> PackageCatalog:
    """Package catalog injected at startup."""
    catalog: PackageCatalog = request.app.state.catalog
    return catalog


def get_text_generator(request: Request) -> TextGenerator | None:
    """Configured text generator, or None for the fallback path."""
    return getattr(request.app.state, "text_generator", None)


def get_build_trigger(request: Request) -> BuildTrigger | None:
    """Configured external build trigger, or None for local completion."""
    return getattr(request.app.state, "build_trigger", None)
