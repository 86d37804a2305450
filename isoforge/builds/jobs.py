"""Job store operations.

Jobs are updated with optimistic concurrency: every write bumps the row's
version counter, and a write against a stale version raises
``StaleDataError``. ``update_job`` re-reads and re-applies its change up to
``MAX_UPDATE_ATTEMPTS`` times. Log lines are separate rows inserted in the
same transaction, so a retried write never duplicates or drops a line.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from isoforge.builds.models import BuildJob, JobLogEntry
from isoforge.db import get_session
from isoforge.types import JobStatus, can_transition

logger = logging.getLogger(__name__)

DEFAULT_TTL_DAYS = 7
MAX_UPDATE_ATTEMPTS = 5

UPDATABLE_FIELDS = frozenset(
    {
        "status",
        "progress",
        "completed_at",
        "error",
        "test_passed",
        "test_total",
        "checksums",
        "artifacts",
        "build_runner",
        "image_uploaded",
        "image_size",
        "image_sha256",
        "image_key",
    }
)


class JobNotFoundError(Exception):
    """Raised when a job does not exist or has expired."""

    def __init__(self, job_id: str, code: str = "build_not_found") -> None:
        super().__init__(f"Build not found: {job_id}")
        self.job_id = job_id
        self.code = code


class InvalidTransitionError(Exception):
    """Raised when a status change is not allowed."""

    def __init__(
        self,
        job_id: str,
        current: JobStatus,
        requested: JobStatus,
        code: str = "invalid_transition",
    ) -> None:
        super().__init__(
            f"Build {job_id} cannot move from {current.value} to {requested.value}"
        )
        self.job_id = job_id
        self.current = current
        self.requested = requested
        self.code = code


class JobNotActiveError(Exception):
    """Raised when a pipeline checkpoint finds the job in an unexpected status."""

    def __init__(
        self, job_id: str, status: str, code: str = "job_not_active"
    ) -> None:
        super().__init__(f"Build {job_id} is no longer active (status={status})")
        self.job_id = job_id
        self.status = status
        self.code = code


class JobUpdateConflictError(Exception):
    """Raised when an update keeps losing the version race."""

    def __init__(self, job_id: str, code: str = "update_conflict") -> None:
        super().__init__(
            f"Build {job_id} update failed after {MAX_UPDATE_ATTEMPTS} attempts"
        )
        self.job_id = job_id
        self.code = code


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, as stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _add_log_entry(
    session: Session, job_id: str, message: str, now: datetime | None = None
) -> JobLogEntry:
    """Insert a log line whose timestamp never precedes the previous line."""
    if now is None:
        now = utcnow()
    last = session.execute(
        select(JobLogEntry.created_at)
        .where(JobLogEntry.job_id == job_id)
        .order_by(JobLogEntry.id.desc())
        .limit(1)
    ).scalar_one_or_none()
    if last is not None and last > now:
        now = last
    entry = JobLogEntry(job_id=job_id, created_at=now, message=message)
    session.add(entry)
    return entry


def create_job(
    session: Session,
    *,
    job_id: str,
    distro: str,
    mode: str,
    packages: list[str],
    custom_software: list[str],
    overlays: list[str],
    ai_model: str,
    kernel_config_lines: int,
    storage_prefix: str,
    build_script_hash: str,
    logs: list[str] | None = None,
    ttl_days: int = DEFAULT_TTL_DAYS,
) -> BuildJob:
    """Create a job in ``building`` status with its initial log lines.

    Args:
        session: Database session.
        job_id: New job id.
        distro: Target distro id.
        mode: Build mode.
        packages: Resolved overlay packages.
        custom_software: Free-form package names.
        overlays: Requested overlay ids.
        ai_model: Model label.
        kernel_config_lines: Kernel fragment line count.
        storage_prefix: Artifact store prefix.
        build_script_hash: SHA-256 of build.sh.
        logs: Initial log lines.
        ttl_days: Retention window.

    Returns:
        Created BuildJob.
    """
    now = utcnow()
    job = BuildJob(
        id=job_id,
        distro=distro,
        mode=mode,
        status=JobStatus.BUILDING.value,
        progress=0,
        created_at=now,
        packages=list(packages),
        custom_software=list(custom_software),
        overlays=list(overlays),
        ai_model=ai_model,
        kernel_config_lines=kernel_config_lines,
        storage_prefix=storage_prefix,
        build_script_hash=build_script_hash,
        image_uploaded=False,
        expires_at=now + timedelta(days=ttl_days),
    )
    session.add(job)
    session.flush()
    for message in logs or []:
        _add_log_entry(session, job_id, message, now)
        session.flush()
    logger.info("Created build job %s (%s/%s)", job_id, distro, mode)
    return job


def get_job(session: Session, job_id: str, now: datetime | None = None) -> BuildJob:
    """Get a live job by id.

    Args:
        session: Database session.
        job_id: Job id.
        now: Reference time for expiry (defaults to now).

    Returns:
        BuildJob instance.

    Raises:
        JobNotFoundError: If the job does not exist or has expired.
    """
    job = session.get(BuildJob, job_id)
    if job is None or job.expires_at <= (now or utcnow()):
        raise JobNotFoundError(job_id)
    return job


def get_job_or_none(
    session: Session, job_id: str, now: datetime | None = None
) -> BuildJob | None:
    """Get a live job by id, or None."""
    try:
        return get_job(session, job_id, now)
    except JobNotFoundError:
        return None


def list_jobs(
    session: Session,
    status: JobStatus | None = None,
    limit: int = 100,
    now: datetime | None = None,
) -> list[BuildJob]:
    """List live jobs, newest first.

    Args:
        session: Database session.
        status: Filter by status.
        limit: Maximum results to return.
        now: Reference time for expiry.

    Returns:
        List of BuildJob instances.
    """
    stmt = select(BuildJob).where(BuildJob.expires_at > (now or utcnow()))
    if status is not None:
        stmt = stmt.where(BuildJob.status == status.value)
    stmt = stmt.order_by(BuildJob.created_at.desc()).limit(limit)
    return list(session.execute(stmt).scalars().all())


def _apply_changes(job: BuildJob, changes: dict[str, Any]) -> None:
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown job fields: {', '.join(sorted(unknown))}")

    for key, value in changes.items():
        if key == "status":
            current = job.job_status
            requested = JobStatus(value)
            if not can_transition(current, requested):
                raise InvalidTransitionError(job.id, current, requested)
            job.status = requested.value
        elif key == "progress":
            clamped = max(0, min(100, int(value)))
            job.progress = max(job.progress, clamped)
        else:
            setattr(job, key, value)


def update_job(
    session_factory: Callable[[], Session],
    job_id: str,
    changes: dict[str, Any] | None = None,
    log: str | None = None,
    require_status: JobStatus | None = None,
    condition: Callable[[BuildJob], bool] | None = None,
    ttl_days: int = DEFAULT_TTL_DAYS,
) -> dict[str, Any]:
    """Apply a partial update to a job.

    Progress never decreases, status changes must follow the lifecycle, and
    every write refreshes the retention window.

    Args:
        session_factory: Session factory; each attempt uses a fresh session.
        job_id: Job id.
        changes: Field values to set (see ``UPDATABLE_FIELDS``).
        log: Optional log line to append.
        require_status: Abort unless the job is currently in this status.
        condition: Skip the write (and the log line) when this returns False.
        ttl_days: Retention window.

    Returns:
        Snapshot of the job after the update.

    Raises:
        JobNotFoundError: If the job does not exist or has expired.
        JobNotActiveError: If ``require_status`` does not match.
        InvalidTransitionError: If the status change is not allowed.
        JobUpdateConflictError: If every attempt hit a concurrent write.
    """
    changes = changes or {}
    for attempt in range(1, MAX_UPDATE_ATTEMPTS + 1):
        try:
            with get_session(session_factory) as session:
                job = get_job(session, job_id)
                if require_status is not None and job.status != require_status.value:
                    raise JobNotActiveError(job_id, job.status)
                if condition is not None and not condition(job):
                    return job_to_dict(job)
                _apply_changes(job, changes)
                now = utcnow()
                job.expires_at = now + timedelta(days=ttl_days)
                if log:
                    _add_log_entry(session, job_id, log, now)
                session.flush()
                return job_to_dict(job)
        except StaleDataError:
            logger.debug(
                "Concurrent write on build %s, retrying (attempt %d)", job_id, attempt
            )
    raise JobUpdateConflictError(job_id)


def append_log(
    session_factory: Callable[[], Session],
    job_id: str,
    message: str,
    ttl_days: int = DEFAULT_TTL_DAYS,
) -> dict[str, Any]:
    """Append one line to a job's log."""
    return update_job(session_factory, job_id, log=message, ttl_days=ttl_days)


def purge_expired_jobs(session: Session, now: datetime | None = None) -> int:
    """Delete jobs whose retention window has passed.

    Args:
        session: Database session.
        now: Reference time.

    Returns:
        Number of jobs deleted.
    """
    cutoff = now or utcnow()
    expired_ids = list(
        session.execute(
            select(BuildJob.id).where(BuildJob.expires_at <= cutoff)
        ).scalars()
    )
    if not expired_ids:
        return 0
    session.execute(delete(JobLogEntry).where(JobLogEntry.job_id.in_(expired_ids)))
    session.execute(delete(BuildJob).where(BuildJob.id.in_(expired_ids)))
    logger.info("Purged %d expired build jobs", len(expired_ids))
    return len(expired_ids)


def _iso(value: datetime | None) -> str | None:
    return f"{value.isoformat()}Z" if value else None


def job_to_dict(job: BuildJob) -> dict[str, Any]:
    """Convert a job (with its log) to a dictionary.

    Must be called while the job is attached to a session.
    """
    test_results = None
    if job.test_total is not None:
        test_results = {"passed": job.test_passed, "total": job.test_total}
    return {
        "id": job.id,
        "distro": job.distro,
        "mode": job.mode,
        "status": job.status,
        "progress": job.progress,
        "created_at": _iso(job.created_at),
        "completed_at": _iso(job.completed_at),
        "packages": list(job.packages or []),
        "custom_software": list(job.custom_software or []),
        "overlays": list(job.overlays or []),
        "ai_model": job.ai_model,
        "kernel_config_lines": job.kernel_config_lines,
        "storage_prefix": job.storage_prefix,
        "build_script_hash": job.build_script_hash,
        "error": job.error,
        "test_results": test_results,
        "checksums": dict(job.checksums) if job.checksums else None,
        "artifacts": list(job.artifacts) if job.artifacts else None,
        "build_runner": job.build_runner,
        "image_uploaded": job.image_uploaded,
        "image_size": job.image_size,
        "image_sha256": job.image_sha256,
        "image_key": job.image_key,
        "expires_at": _iso(job.expires_at),
        "logs": [entry.render() for entry in job.log_entries],
    }


__all__ = [
    "DEFAULT_TTL_DAYS",
    "MAX_UPDATE_ATTEMPTS",
    "UPDATABLE_FIELDS",
    "InvalidTransitionError",
    "JobNotActiveError",
    "JobNotFoundError",
    "JobUpdateConflictError",
    "append_log",
    "create_job",
    "get_job",
    "get_job_or_none",
    "job_to_dict",
    "list_jobs",
    "purge_expired_jobs",
    "update_job",
    "utcnow",
]
