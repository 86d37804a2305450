"""Build orchestration service.

This module provides the high-level build API:
- submit_build(): resolve, generate the kernel config and build script,
  persist the first artifacts and create the job
- run_pipeline(): the detached multi-phase pipeline that finishes the
  artifact set, validates it and hands off to the external runner
- record_progress() / record_image_upload(): runner callbacks
- reconcile_image(): self-heal a job whose image reached the artifact store
  but not the job record
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Session

from isoforge.builds.artifacts import (
    ARTIFACT_FILES,
    BUILD_SCRIPT_FILE,
    CHECKSUM_FILES,
    CHECKSUMS_FILE,
    COMPOSE_FILE,
    DOCKERFILE_FILE,
    KERNEL_CONFIG_FILE,
    MANIFEST_FILE,
    README_FILE,
    TEST_RESULTS_FILE,
    compute_text_hash,
    content_type_for,
    generate_build_script,
    generate_compose,
    generate_dockerfile,
    generate_readme,
    render_checksums,
)
from isoforge.builds.jobs import (
    JobNotActiveError,
    JobNotFoundError,
    create_job,
    get_job,
    job_to_dict,
    update_job,
    utcnow,
)
from isoforge.builds.models import BuildJob
from isoforge.builds.schema import BuildRequest, Manifest
from isoforge.builds.storage import (
    ArtifactNotFoundError,
    ArtifactStore,
    ObjectInfo,
    artifact_key,
    image_key,
    job_prefix,
)
from isoforge.builds.validation import format_summary, run_build_validation, summarize
from isoforge.catalog.models import PackageCatalog
from isoforge.catalog.resolver import resolve_packages
from isoforge.db import get_session
from isoforge.kernel.fragment import config_lines, count_lines, generate_kernel_config
from isoforge.types import BuildRunner, JobStatus

if TYPE_CHECKING:
    from isoforge.builds.trigger import BuildTrigger
    from isoforge.config import Settings
    from isoforge.kernel.ai import TextGenerator

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]

# Statuses in which the runner may already have uploaded the image
IMAGE_PENDING_STATUSES = frozenset(
    {JobStatus.BUILDING_ISO, JobStatus.COMPLETE, JobStatus.COMPLETE_WITH_WARNINGS}
)


class PipelineError(Exception):
    """Raised for a fatal pipeline condition."""

    def __init__(self, message: str, code: str = "pipeline_error") -> None:
        super().__init__(message)
        self.code = code


class BuildNotCompleteError(Exception):
    """Raised when artifacts are requested before the job completed."""

    def __init__(
        self, job_id: str, status: str, progress: int, code: str = "build_not_complete"
    ) -> None:
        super().__init__(f"Build not complete yet: {job_id} (status={status})")
        self.job_id = job_id
        self.status = status
        self.progress = progress
        self.code = code


class ImageNotReadyError(Exception):
    """Raised when the final image has not been uploaded."""

    def __init__(self, job_id: str, code: str = "image_not_ready") -> None:
        super().__init__(f"Image not ready for build {job_id}")
        self.job_id = job_id
        self.code = code


class ImageUploadError(Exception):
    """Raised when an image upload cannot be accepted."""

    def __init__(self, message: str, code: str = "image_upload_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class SubmitResult:
    """Summary returned to the client when a job is created."""

    job_id: str
    status: str
    ai_model: str
    kernel_config_lines: int
    packages: int
    storage_prefix: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.job_id,
            "status": self.status,
            "ai_model": self.ai_model,
            "kernel_config_lines": self.kernel_config_lines,
            "packages": self.packages,
            "storage_prefix": self.storage_prefix,
        }


def _iso_utc(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def submit_build(
    session_factory: SessionFactory,
    store: ArtifactStore,
    request: BuildRequest,
    settings: Settings,
    catalog: PackageCatalog,
    generator: TextGenerator | None = None,
    now: datetime | None = None,
) -> SubmitResult:
    """Create a build job from a request.

    Resolves packages, generates the kernel config fragment, writes
    kernel.config, build.sh and manifest.json to the artifact store, and
    creates the job record. The pipeline is started separately with
    ``run_pipeline``.

    Args:
        session_factory: Session factory for the job store.
        store: Artifact store.
        request: Build request.
        settings: Application settings.
        catalog: Package catalog.
        generator: Optional text generator for the kernel fragment.
        now: Creation time (defaults to now).

    Returns:
        SubmitResult describing the new job.
    """
    job_id = str(uuid.uuid4())
    pkg_manager = catalog.pkg_manager_for(request.distro)
    base_image = catalog.base_image_for(request.distro)
    packages = resolve_packages(catalog, pkg_manager, request.overlays)

    kernel = generate_kernel_config(
        request.hardware_raw,
        request.distro,
        request.mode,
        request.detected_modules,
        generator,
        settings.ai_max_tokens,
    )
    kernel_config = kernel.text
    line_count = count_lines(kernel_config)

    manifest = Manifest(
        job_id=job_id,
        distro=request.distro,
        mode=request.mode,
        base_image=base_image,
        pkg_manager=pkg_manager,
        packages=tuple(packages),
        custom_software=tuple(request.custom_software),
        overlays=tuple(request.overlays),
        modules=tuple(request.detected_modules),
        ai_mode=request.ai_mode,
        ai_model=kernel.model_label,
        kernel_config_lines=line_count,
        created=_iso_utc(now or datetime.now(timezone.utc)),
    )
    build_script = generate_build_script(manifest, kernel_config, catalog)

    prefix = job_prefix(job_id)
    for filename, text in (
        (KERNEL_CONFIG_FILE, kernel_config),
        (BUILD_SCRIPT_FILE, build_script),
        (MANIFEST_FILE, manifest.to_json()),
    ):
        store.put_text(artifact_key(job_id, filename), text, content_type_for(filename))

    with get_session(session_factory) as session:
        create_job(
            session,
            job_id=job_id,
            distro=request.distro,
            mode=request.mode,
            packages=packages,
            custom_software=list(request.custom_software),
            overlays=list(request.overlays),
            ai_model=kernel.model_label,
            kernel_config_lines=line_count,
            storage_prefix=prefix,
            build_script_hash=compute_text_hash(build_script),
            logs=[
                f"Build job {job_id} created",
                f"AI model: {kernel.model_label}",
                f"Kernel config: {line_count} lines generated",
                f"Packages: {len(packages)} overlay + "
                f"{len(request.custom_software)} custom",
                f"Build script stored: {prefix}/{BUILD_SCRIPT_FILE}",
                f"Kernel config stored: {prefix}/{KERNEL_CONFIG_FILE}",
            ],
            ttl_days=settings.job_ttl_days,
        )

    return SubmitResult(
        job_id=job_id,
        status=JobStatus.BUILDING.value,
        ai_model=kernel.model_label,
        kernel_config_lines=line_count,
        packages=len(packages),
        storage_prefix=prefix,
    )


def _read_required(store: ArtifactStore, job_id: str, filename: str) -> str:
    try:
        return store.get_text(artifact_key(job_id, filename))
    except ArtifactNotFoundError:
        raise PipelineError(
            f"{filename} not found in artifact store", code="artifact_missing"
        ) from None


def _script_shape(build_script: str) -> dict[str, bool]:
    lines = build_script.split("\n")
    return {
        "shebang": lines[0] == "#!/bin/bash",
        "strict_mode": any("set -euo pipefail" in line for line in lines),
        "docker_pull": any("docker pull" in line for line in lines),
        "kernel_clone": any("git clone" in line and "linux" in line for line in lines),
        "kernel_make": any(
            "make" in line and ("bzImage" in line or "defconfig" in line)
            for line in lines
        ),
        "iso_creation": any(
            "grub-mkrescue" in line or "xorriso" in line or "mkisofs" in line
            for line in lines
        ),
    }


def run_pipeline(
    session_factory: SessionFactory,
    store: ArtifactStore,
    job_id: str,
    catalog: PackageCatalog,
    trigger: BuildTrigger | None,
    settings: Settings,
) -> None:
    """Run the post-submission pipeline for a job.

    Phases run strictly in order. Every checkpoint requires the job to still
    be ``building``; if another writer moved it on, the run stops quietly.
    Any other exception marks the job ``failed``.

    Args:
        session_factory: Session factory for the job store.
        store: Artifact store.
        job_id: Job to run.
        catalog: Package catalog.
        trigger: Optional external build trigger.
        settings: Application settings.
    """
    ttl_days = settings.job_ttl_days

    def checkpoint(progress: int, log: str, **changes: Any) -> None:
        update_job(
            session_factory,
            job_id,
            {"progress": progress, **changes},
            log=log,
            require_status=JobStatus.BUILDING,
            ttl_days=ttl_days,
        )

    def put(filename: str, text: str) -> None:
        store.put_text(artifact_key(job_id, filename), text, content_type_for(filename))

    try:
        checkpoint(5, "Retrieving build artifacts from artifact store...")
        manifest = Manifest.model_validate_json(
            _read_required(store, job_id, MANIFEST_FILE)
        )
        kernel_config = _read_required(store, job_id, KERNEL_CONFIG_FILE)
        build_script = _read_required(store, job_id, BUILD_SCRIPT_FILE)

        checkpoint(10, "Validating kernel configuration...")
        cfg_lines = config_lines(kernel_config)
        enabled = sum(1 for line in cfg_lines if "=y" in line or "=m" in line)
        disabled = sum(1 for line in cfg_lines if "is not set" in line or "=n" in line)
        if len(cfg_lines) < settings.min_kernel_config_lines:
            raise PipelineError(
                f"Kernel config too small: {len(cfg_lines)} lines. "
                f"Expected at least {settings.min_kernel_config_lines}.",
                code="kernel_config_too_small",
            )
        checkpoint(
            15,
            f"Kernel config validated: {enabled} enabled, {disabled} disabled, "
            f"{len(cfg_lines)} total config lines",
        )

        checkpoint(20, "Validating build script...")
        missing = [name for name, ok in _script_shape(build_script).items() if not ok]
        if missing:
            checkpoint(25, f"WARNING: Build script missing: {', '.join(missing)}")
        else:
            checkpoint(25, "Build script validated: all phases present")

        resolved = ", ".join(f"✓ {p}" for p in manifest.packages)
        checkpoint(
            30,
            f"Resolved {len(manifest.packages)} packages for "
            f"{manifest.pkg_manager}: {resolved}",
        )

        checkpoint(40, "Generating Dockerfile...")
        dockerfile = generate_dockerfile(manifest, kernel_config, catalog.build_image)
        put(DOCKERFILE_FILE, dockerfile)
        dockerfile_lines = len(dockerfile.split("\n"))
        checkpoint(45, f"Dockerfile stored ({dockerfile_lines} lines)")

        checkpoint(50, "Generating docker-compose.yml...")
        put(COMPOSE_FILE, generate_compose(manifest))

        checkpoint(60, "Creating build archive...")
        put(README_FILE, generate_readme(manifest))

        checkpoint(70, "Running validation suite...")
        results = run_build_validation(
            manifest, kernel_config, build_script, dockerfile, catalog
        )
        put(TEST_RESULTS_FILE, json.dumps([r.to_dict() for r in results], indent=2))
        passed, total = summarize(results)
        checkpoint(
            85, f"Validation: {passed}/{total} passed [{format_summary(results)}]"
        )

        checksums: dict[str, str] = {}
        for filename in CHECKSUM_FILES:
            key = artifact_key(job_id, filename)
            if store.exists(key):
                checksums[filename] = compute_text_hash(store.get_text(key))
        put(CHECKSUMS_FILE, render_checksums(checksums))
        # Recorded before dispatch: the runner may report completion before
        # the hand-off checkpoint below runs.
        checkpoint(
            87,
            f"Checksums written for {len(checksums)} artifacts",
            test_passed=passed,
            test_total=total,
            checksums=checksums,
            artifacts=list(ARTIFACT_FILES),
        )

        checkpoint(88, "Triggering external image build...")
        triggered = trigger is not None and trigger.dispatch(job_id).triggered

        if triggered:
            checkpoint(
                90,
                f"Validation: {passed}/{total} passed. "
                "External runner building image...",
                status=JobStatus.BUILDING_ISO.value,
                build_runner=BuildRunner.GITHUB_ACTIONS.value,
            )
        else:
            final = (
                JobStatus.COMPLETE
                if passed == total
                else JobStatus.COMPLETE_WITH_WARNINGS
            )
            checkpoint(
                100,
                f"Build {final.value}. {passed}/{total} validations passed. "
                "Download artifacts and run: docker compose up --build",
                status=final.value,
                completed_at=utcnow(),
                build_runner=BuildRunner.LOCAL.value,
            )
        logger.info(
            "Pipeline finished for build %s (%d/%d checks)", job_id, passed, total
        )

    except JobNotActiveError as e:
        logger.info("Pipeline for build %s stopped: %s", job_id, e)
    except JobNotFoundError:
        logger.warning("Pipeline for build %s stopped: job no longer exists", job_id)
    except Exception as e:
        message = str(e) or e.__class__.__name__
        logger.error("Build %s failed: %s", job_id, message)
        try:
            update_job(
                session_factory,
                job_id,
                {"status": JobStatus.FAILED.value, "error": message},
                log=f"BUILD FAILED: {message}",
                ttl_days=ttl_days,
            )
        except Exception:
            logger.exception("Could not record failure for build %s", job_id)


def reconcile_image(
    session_factory: SessionFactory,
    store: ArtifactStore,
    job_id: str,
    ttl_days: int = 7,
) -> bool:
    """Mark the image as uploaded if the artifact store already holds it.

    Args:
        session_factory: Session factory for the job store.
        store: Artifact store.
        job_id: Job id.
        ttl_days: Retention window.

    Returns:
        True if the job record was updated.

    Raises:
        JobNotFoundError: If the job does not exist or has expired.
    """
    key = image_key(job_id)
    info = store.head(key)
    if info is None:
        return False

    updated = False

    def not_yet_uploaded(job: BuildJob) -> bool:
        nonlocal updated
        updated = not job.image_uploaded
        return updated

    update_job(
        session_factory,
        job_id,
        {
            "image_uploaded": True,
            "image_size": info.size,
            "image_sha256": info.metadata.get("sha256", ""),
            "image_key": key,
        },
        log=f"Image confirmed in artifact store: {info.size} bytes",
        condition=not_yet_uploaded,
        ttl_days=ttl_days,
    )
    if updated:
        logger.info("Reconciled image for build %s from artifact store", job_id)
    return updated


def get_job_status(
    session_factory: SessionFactory,
    store: ArtifactStore,
    job_id: str,
    ttl_days: int = 7,
) -> dict[str, Any]:
    """Read a job, falling through to the artifact store for the image.

    Raises:
        JobNotFoundError: If the job does not exist or has expired.
    """
    with get_session(session_factory) as session:
        job = get_job(session, job_id)
        needs_check = (
            not job.image_uploaded and job.job_status in IMAGE_PENDING_STATUSES
        )
        snapshot = job_to_dict(job)
    if needs_check and reconcile_image(session_factory, store, job_id, ttl_days):
        with get_session(session_factory) as session:
            snapshot = job_to_dict(get_job(session, job_id))
    return snapshot


def record_progress(
    session_factory: SessionFactory,
    store: ArtifactStore,
    job_id: str,
    progress: int | None = None,
    log: str | None = None,
    status: JobStatus | None = None,
    ttl_days: int = 7,
) -> dict[str, Any]:
    """Apply a progress callback from the external runner.

    A completed status also reconciles the image against the artifact store.

    Raises:
        JobNotFoundError: If the job does not exist or has expired.
        InvalidTransitionError: If the status change is not allowed.
    """
    changes: dict[str, Any] = {}
    if progress is not None:
        changes["progress"] = progress
    if status is not None:
        changes["status"] = status.value
        if status.is_terminal:
            changes["completed_at"] = utcnow()

    snapshot = update_job(session_factory, job_id, changes, log=log, ttl_days=ttl_days)
    if status is not None and status.is_complete and not snapshot["image_uploaded"]:
        if reconcile_image(session_factory, store, job_id, ttl_days):
            with get_session(session_factory) as session:
                snapshot = job_to_dict(get_job(session, job_id))
    return snapshot


def image_upload_metadata(
    reported_sha256: str | None, reported_size: str | None
) -> dict[str, str]:
    """Custom metadata stored with an uploaded image."""
    return {
        "sha256": reported_sha256 or "unknown",
        "size": reported_size or "0",
        "uploaded": _iso_utc(datetime.now(timezone.utc)),
    }


def record_image_upload(
    session_factory: SessionFactory,
    store: ArtifactStore,
    job_id: str,
    reported_sha256: str | None,
    ttl_days: int = 7,
) -> dict[str, Any]:
    """Stamp the job after an image was streamed into the artifact store.

    Args:
        session_factory: Session factory for the job store.
        store: Artifact store.
        job_id: Job id.
        reported_sha256: Checksum reported by the runner.
        ttl_days: Retention window.

    Returns:
        Upload summary.

    Raises:
        ImageUploadError: If the object is not visible after the write.
        JobNotFoundError: If the job does not exist or has expired.
    """
    key = image_key(job_id)
    info = store.head(key)
    if info is None:
        raise ImageUploadError(
            "Upload verification failed: object not found after write",
            code="upload_verification_failed",
        )
    sha256 = reported_sha256 or info.metadata.get("sha256") or "unknown"
    update_job(
        session_factory,
        job_id,
        {
            "image_uploaded": True,
            "image_size": info.size,
            "image_sha256": sha256,
            "image_key": key,
        },
        log=f"Image uploaded to artifact store: {info.size} bytes, SHA256: {sha256}",
        ttl_days=ttl_days,
    )
    logger.info("Image for build %s uploaded (%d bytes)", job_id, info.size)
    return {"ok": True, "key": key, "size": info.size, "sha256": sha256}


def open_image(
    session_factory: SessionFactory,
    store: ArtifactStore,
    job_id: str,
    ttl_days: int = 7,
) -> tuple[ObjectInfo, str, Iterator[bytes]]:
    """Open the final image for download.

    The artifact store is authoritative: an image that was uploaded but
    never recorded on the job is still served (and the job is healed).

    Returns:
        Tuple of (object info, sha256, byte iterator).

    Raises:
        JobNotFoundError: If the job does not exist or has expired.
        ImageNotReadyError: If no image is stored.
    """
    with get_session(session_factory) as session:
        get_job(session, job_id)
    reconcile_image(session_factory, store, job_id, ttl_days)

    key = image_key(job_id)
    info = store.head(key)
    if info is None:
        raise ImageNotReadyError(job_id)
    with get_session(session_factory) as session:
        sha256 = get_job(session, job_id).image_sha256
    return info, sha256 or info.metadata.get("sha256", ""), store.iter_bytes(key)


def list_job_artifacts(session_factory: SessionFactory, job_id: str) -> dict[str, Any]:
    """List downloadable artifacts for a completed job.

    Raises:
        JobNotFoundError: If the job does not exist or has expired.
        BuildNotCompleteError: If the job is not complete.
    """
    with get_session(session_factory) as session:
        job = get_job(session, job_id)
        if not job.job_status.is_complete:
            raise BuildNotCompleteError(job_id, job.status, job.progress)
        snapshot = job_to_dict(job)
    return {
        "id": job_id,
        "status": snapshot["status"],
        "artifacts": [
            {"name": name, "url": f"/builds/{job_id}/files/{name}"}
            for name in ARTIFACT_FILES
        ],
        "test_results": snapshot["test_results"],
        "checksums": snapshot["checksums"],
    }


def read_artifact(store: ArtifactStore, job_id: str, filename: str) -> tuple[str, str]:
    """Read one allow-listed artifact.

    Returns:
        Tuple of (text, content type).

    Raises:
        ArtifactNotFoundError: If the name is not allow-listed or not stored.
    """
    if filename not in ARTIFACT_FILES:
        raise ArtifactNotFoundError(filename)
    return store.get_text(artifact_key(job_id, filename)), content_type_for(filename)


__all__ = [
    "BuildNotCompleteError",
    "ImageNotReadyError",
    "ImageUploadError",
    "PipelineError",
    "SubmitResult",
    "get_job_status",
    "image_upload_metadata",
    "list_job_artifacts",
    "open_image",
    "read_artifact",
    "reconcile_image",
    "record_image_upload",
    "record_progress",
    "run_pipeline",
    "submit_build",
]
