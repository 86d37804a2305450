"""Health and readiness endpoints.

``/health`` is a cheap liveness check that also reports which backends the
service was wired with. ``/health/ready`` touches the job store and the
artifact store and answers 503 when either is unusable.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from isoforge import __version__
from isoforge.builds.storage import ArtifactStore
from isoforge.builds.trigger import BuildTrigger
from isoforge.config import Settings
from isoforge.kernel.ai import TextGenerator
from web.deps import (
    get_app_settings,
    get_build_trigger,
    get_session_factory,
    get_store,
    get_text_generator,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
def health(
    settings: Settings = Depends(get_app_settings),
    generator: TextGenerator | None = Depends(get_text_generator),
    trigger: BuildTrigger | None = Depends(get_build_trigger),
) -> dict[str, Any]:
    """Liveness with the configured backends."""
    return {
        "status": "ok",
        "version": __version__,
        "services": {
            "ai": "anthropic" if generator is not None else "fallback",
            "storage": "filesystem",
            "jobs": make_url(settings.db_url).get_backend_name(),
            "runner": "github_actions" if trigger is not None else "local",
        },
    }


@router.get("/health/ready")
def ready(
    response: Response,
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    store: ArtifactStore = Depends(get_store),
) -> dict[str, Any]:
    """Readiness: the job store answers a query and the store root exists."""
    checks = {"jobs": True, "storage": True}

    try:
        with session_factory() as session:
            session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning("Job store not ready: %s", e)
        checks["jobs"] = False

    try:
        store.root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning("Artifact store %s not ready: %s", store.root, e)
        checks["storage"] = False

    if not all(checks.values()):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "unavailable", "checks": checks}
    return {"status": "ready", "checks": checks}


@router.get("/")
def root() -> dict[str, str]:
    return {"name": "isoforge API", "version": __version__}
