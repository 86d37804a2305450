"""Build job endpoints.

- POST /builds - Create a build job and start its pipeline
- GET /builds - List live jobs
- GET /builds/{id} - Job status
- POST /builds/{id}/progress - Progress callback from the external runner
- GET /builds/{id}/artifacts - List artifacts of a completed job
- GET /builds/{id}/files/{filename} - Download one artifact
- PUT /builds/{id}/image - Upload the final image
- GET /builds/{id}/image - Download the final image
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    Header,
    HTTPException,
    Query,
    Request,
    Response,
    status,
)
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from isoforge.builds.jobs import (
    InvalidTransitionError,
    JobNotFoundError,
    JobUpdateConflictError,
    get_job,
    job_to_dict,
    list_jobs,
)
from isoforge.builds.schema import BuildRequest
from isoforge.builds.service import (
    BuildNotCompleteError,
    ImageNotReadyError,
    ImageUploadError,
    get_job_status,
    image_upload_metadata,
    list_job_artifacts,
    open_image,
    read_artifact,
    record_image_upload,
    record_progress,
    run_pipeline,
    submit_build,
)
from isoforge.builds.storage import (
    ArtifactNotFoundError,
    ArtifactStore,
    ArtifactStoreError,
    ObjectWriter,
    image_key,
)
from isoforge.builds.trigger import BuildTrigger
from isoforge.catalog.models import PackageCatalog
from isoforge.config import Settings
from isoforge.db import get_session
from isoforge.kernel.ai import TextGenerator
from isoforge.types import JobStatus
from web.deps import (
    get_app_settings,
    get_build_trigger,
    get_catalog,
    get_db,
    get_session_factory,
    get_store,
    get_text_generator,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class ProgressUpdate(BaseModel):
    """Request body for a runner progress callback."""

    progress: int | None = Field(default=None, ge=0, le=100)
    log: str | None = None
    status: str | None = None


def _error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status_code, detail={"code": code, "message": message}
    )


def _not_found(e: JobNotFoundError) -> HTTPException:
    return _error(status.HTTP_404_NOT_FOUND, e.code, str(e))


def _check_secret(authorization: str | None, secret: str | None) -> None:
    """Require ``Authorization: Bearer <secret>``.

    Raises:
        HTTPException: 401 if the secret is unset or does not match.
    """
    expected = f"Bearer {secret}" if secret else None
    if expected is None or authorization is None or not hmac.compare_digest(
        authorization.encode("utf-8"), expected.encode("utf-8")
    ):
        raise _error(status.HTTP_401_UNAUTHORIZED, "unauthorized", "Unauthorized")


@router.post("", status_code=status.HTTP_201_CREATED)
def create_build_endpoint(
    body: BuildRequest,
    background_tasks: BackgroundTasks,
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    store: ArtifactStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
    catalog: PackageCatalog = Depends(get_catalog),
    generator: TextGenerator | None = Depends(get_text_generator),
    trigger: BuildTrigger | None = Depends(get_build_trigger),
) -> dict[str, Any]:
    """Create a build job.

    The kernel config and build script are generated synchronously; the
    rest of the pipeline runs after the response is sent.

    Returns:
        Job summary with id and initial status.
    """
    try:
        result = submit_build(
            session_factory, store, body, settings, catalog, generator
        )
    except ArtifactStoreError as e:
        logger.error("Cannot create build: %s", e)
        raise _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR, e.code, str(e)
        ) from None

    background_tasks.add_task(
        run_pipeline, session_factory, store, result.job_id, catalog, trigger, settings
    )
    return result.to_dict()


@router.get("")
def list_builds_endpoint(
    status_filter: str | None = Query(
        None, alias="status", description="Filter by status"
    ),
    limit: int = Query(100, ge=1, le=1000, description="Maximum results"),
    db: Session = Depends(get_db),
) -> list[dict[str, Any]]:
    """List live build jobs, newest first."""
    job_status: JobStatus | None = None
    if status_filter:
        try:
            job_status = JobStatus(status_filter)
        except ValueError:
            raise _error(
                status.HTTP_400_BAD_REQUEST,
                "invalid_status",
                f"Invalid status: {status_filter}",
            ) from None

    return [job_to_dict(job) for job in list_jobs(db, status=job_status, limit=limit)]


@router.get("/{job_id}")
def get_build_endpoint(
    job_id: str,
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    store: ArtifactStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    """Get the status of a build job.

    Raises:
        HTTPException: 404 if the job does not exist or has expired.
    """
    try:
        return get_job_status(session_factory, store, job_id, settings.job_ttl_days)
    except JobNotFoundError as e:
        raise _not_found(e) from None


@router.post("/{job_id}/progress")
def progress_endpoint(
    job_id: str,
    body: ProgressUpdate,
    authorization: str | None = Header(None),
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    store: ArtifactStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    """Record progress reported by the external runner.

    Raises:
        HTTPException: 401 on a bad secret, 404 for unknown jobs, 400 for an
            unknown status, 409 for a disallowed status change.
    """
    if settings.require_callback_auth:
        _check_secret(authorization, settings.build_secret)

    new_status: JobStatus | None = None
    if body.status is not None:
        try:
            new_status = JobStatus(body.status)
        except ValueError:
            raise _error(
                status.HTTP_400_BAD_REQUEST,
                "invalid_status",
                f"Invalid status: {body.status}",
            ) from None

    try:
        snapshot = record_progress(
            session_factory,
            store,
            job_id,
            progress=body.progress,
            log=body.log,
            status=new_status,
            ttl_days=settings.job_ttl_days,
        )
    except JobNotFoundError as e:
        raise _not_found(e) from None
    except InvalidTransitionError as e:
        raise _error(status.HTTP_409_CONFLICT, e.code, str(e)) from None
    except JobUpdateConflictError as e:
        raise _error(status.HTTP_409_CONFLICT, e.code, str(e)) from None
    return {"ok": True, "status": snapshot["status"], "progress": snapshot["progress"]}


@router.get("/{job_id}/artifacts")
def list_artifacts_endpoint(
    job_id: str,
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
) -> dict[str, Any]:
    """List downloadable artifacts for a completed job."""
    try:
        return list_job_artifacts(session_factory, job_id)
    except JobNotFoundError as e:
        raise _not_found(e) from None
    except BuildNotCompleteError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": e.code,
                "message": str(e),
                "status": e.status,
                "progress": e.progress,
            },
        ) from None


@router.get("/{job_id}/files/{filename}")
def download_artifact_endpoint(
    job_id: str,
    filename: str,
    store: ArtifactStore = Depends(get_store),
) -> Response:
    """Download a single artifact by file name."""
    try:
        text, content_type = read_artifact(store, job_id, filename)
    except ArtifactNotFoundError as e:
        raise _error(
            status.HTTP_404_NOT_FOUND, e.code, f"File not found: {filename}"
        ) from None

    return Response(
        content=text,
        media_type=content_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _require_job(session_factory: sessionmaker[Session], job_id: str) -> None:
    with get_session(session_factory) as session:
        get_job(session, job_id)


@asynccontextmanager
async def _threaded_writer(
    store: ArtifactStore, key: str, metadata: dict[str, str]
) -> AsyncIterator[ObjectWriter]:
    """Open a store writer whose file work runs in the threadpool."""
    writer = store.writer(key, "application/octet-stream", metadata)
    sink = await run_in_threadpool(writer.__enter__)
    try:
        yield sink
    except BaseException as e:
        await run_in_threadpool(writer.__exit__, type(e), e, e.__traceback__)
        raise
    await run_in_threadpool(writer.__exit__, None, None, None)


@router.put("/{job_id}/image")
async def upload_image_endpoint(
    job_id: str,
    request: Request,
    authorization: str | None = Header(None),
    x_image_sha256: str | None = Header(None),
    x_image_size: str | None = Header(None),
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    store: ArtifactStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    """Upload the final image.

    The body is streamed into the artifact store and only becomes visible
    once it has been received completely.

    Raises:
        HTTPException: 401 on a bad secret, 404 for unknown jobs, 400 for an
            empty body, 409 if the job record keeps changing underneath.
    """
    _check_secret(authorization, settings.build_secret)
    try:
        await run_in_threadpool(_require_job, session_factory, job_id)
    except JobNotFoundError as e:
        raise _not_found(e) from None

    key = image_key(job_id)
    metadata = image_upload_metadata(x_image_sha256, x_image_size)
    try:
        async with _threaded_writer(store, key, metadata) as sink:
            async for chunk in request.stream():
                if chunk:
                    await run_in_threadpool(sink.write, chunk)
            if sink.size == 0:
                raise ImageUploadError("No image data received", code="empty_upload")
    except ImageUploadError as e:
        raise _error(status.HTTP_400_BAD_REQUEST, e.code, str(e)) from None
    except ArtifactStoreError as e:
        logger.error("Image upload for build %s failed: %s", job_id, e)
        raise _error(status.HTTP_500_INTERNAL_SERVER_ERROR, e.code, str(e)) from None

    try:
        return await run_in_threadpool(
            record_image_upload,
            session_factory,
            store,
            job_id,
            x_image_sha256,
            settings.job_ttl_days,
        )
    except JobNotFoundError as e:
        raise _not_found(e) from None
    except JobUpdateConflictError as e:
        raise _error(status.HTTP_409_CONFLICT, e.code, str(e)) from None
    except ImageUploadError as e:
        raise _error(status.HTTP_500_INTERNAL_SERVER_ERROR, e.code, str(e)) from None


@router.get("/{job_id}/image")
def download_image_endpoint(
    job_id: str,
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    store: ArtifactStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> StreamingResponse:
    """Download the final image.

    Raises:
        HTTPException: 404 for unknown jobs, 400 if no image is stored.
    """
    try:
        info, sha256, chunks = open_image(
            session_factory, store, job_id, settings.job_ttl_days
        )
    except JobNotFoundError as e:
        raise _not_found(e) from None
    except ImageNotReadyError as e:
        raise _error(status.HTTP_400_BAD_REQUEST, e.code, str(e)) from None

    headers = {
        "Content-Length": str(info.size),
        "Content-Disposition": f'attachment; filename="isoforge-{job_id[:8]}.iso"',
    }
    if sha256:
        headers["X-Image-SHA256"] = sha256
    return StreamingResponse(
        chunks, media_type="application/octet-stream", headers=headers
    )
