"""Job store ORM models.

This module defines the BuildJob and JobLogEntry models. Job rows carry a
version counter used by SQLAlchemy for optimistic concurrency; log lines
live in their own append-only table so concurrent writers never overwrite
each other's entries.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from isoforge.db import Base
from isoforge.types import JobStatus


class BuildJob(Base):
    """ORM model for a build job.

    Attributes:
        id: Job id (uuid4 string).
        distro: Target distro id.
        mode: Build mode.
        status: Lifecycle status.
        progress: Percent complete, never decreases.
        created_at: Creation timestamp (UTC).
        completed_at: Completion timestamp (UTC).
        packages: Resolved overlay packages.
        custom_software: Free-form package names.
        overlays: Requested overlay ids.
        ai_model: Model label recorded in the manifest.
        kernel_config_lines: Line count of the kernel fragment.
        storage_prefix: Artifact store prefix (builds/<id>).
        build_script_hash: SHA-256 of build.sh.
        error: Failure message for failed jobs.
        test_passed: Passing validation checks.
        test_total: Total validation checks.
        checksums: File name to SHA-256 map.
        artifacts: Generated artifact file names.
        build_runner: Where the image is built.
        image_uploaded: Whether the final image is known to be stored.
        image_size: Image size in bytes.
        image_sha256: Image checksum reported by the runner.
        image_key: Artifact store key of the image.
        expires_at: Retention deadline, refreshed on every write.
        version: Optimistic concurrency counter.
    """

    __tablename__ = "build_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    distro: Mapped[str] = mapped_column(String(64), nullable=False)
    mode: Mapped[str] = mapped_column(String(32), nullable=False)

    # Status and timing
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=JobStatus.BUILDING.value, index=True
    )
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Resolved configuration
    packages: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    custom_software: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, default=list
    )
    overlays: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    ai_model: Mapped[str] = mapped_column(Text, nullable=False)
    kernel_config_lines: Mapped[int] = mapped_column(Integer, nullable=False)
    storage_prefix: Mapped[str] = mapped_column(String(128), nullable=False)
    build_script_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # Pipeline outcome
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    test_passed: Mapped[int | None] = mapped_column(Integer, nullable=True)
    test_total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    checksums: Mapped[dict[str, str] | None] = mapped_column(JSON, nullable=True)
    artifacts: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    build_runner: Mapped[str | None] = mapped_column(String(32), nullable=True)

    # Final image
    image_uploaded: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    image_size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    image_sha256: Mapped[str | None] = mapped_column(String(128), nullable=True)
    image_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    log_entries: Mapped[list["JobLogEntry"]] = relationship(
        "JobLogEntry",
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="JobLogEntry.id",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        """Return string representation of BuildJob."""
        return (
            f"<BuildJob(id='{self.id}', status='{self.status}', "
            f"progress={self.progress})>"
        )

    @property
    def job_status(self) -> JobStatus:
        """Status as an enum."""
        return JobStatus(self.status)


class JobLogEntry(Base):
    """One timestamped line of a job's append-only log.

    Attributes:
        id: Insertion-ordered primary key.
        job_id: Owning job.
        created_at: Entry timestamp; never earlier than the previous entry.
        message: Log text.
    """

    __tablename__ = "job_log_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("build_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    job: Mapped["BuildJob"] = relationship("BuildJob", back_populates="log_entries")

    __table_args__ = (Index("ix_job_log_entries_job_id_id", "job_id", "id"),)

    def __repr__(self) -> str:
        """Return string representation of JobLogEntry."""
        return f"<JobLogEntry(id={self.id}, job_id='{self.job_id}')>"

    def render(self) -> str:
        """Render as ``[<iso timestamp>] <message>``."""
        return f"[{self.created_at.isoformat()}Z] {self.message}"


__all__ = ["BuildJob", "JobLogEntry"]
