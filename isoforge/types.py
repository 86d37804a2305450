"""Shared type definitions for isoforge.

This module contains enums, dataclasses and type aliases shared across
subpackages to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated

from pydantic import StringConstraints

# Package, overlay, module and distro names. Anything matching can be placed
# unquoted into generated shell, Dockerfile and GRUB text.
NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._+-]*$"

Name = Annotated[str, StringConstraints(pattern=NAME_PATTERN, max_length=128)]


class JobStatus(str, Enum):
    """Lifecycle status of a build job."""

    BUILDING = "building"
    BUILDING_ISO = "building_iso"
    COMPLETE = "complete"
    COMPLETE_WITH_WARNINGS = "complete_with_warnings"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition is possible."""
        return self in TERMINAL_STATUSES

    @property
    def is_complete(self) -> bool:
        """Whether this is one of the completed variants."""
        return self in (JobStatus.COMPLETE, JobStatus.COMPLETE_WITH_WARNINGS)


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETE, JobStatus.COMPLETE_WITH_WARNINGS, JobStatus.FAILED}
)

_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.BUILDING: frozenset(
        {
            JobStatus.BUILDING_ISO,
            JobStatus.COMPLETE,
            JobStatus.COMPLETE_WITH_WARNINGS,
            JobStatus.FAILED,
        }
    ),
    JobStatus.BUILDING_ISO: frozenset(
        {JobStatus.COMPLETE, JobStatus.COMPLETE_WITH_WARNINGS, JobStatus.FAILED}
    ),
    JobStatus.COMPLETE: frozenset(),
    JobStatus.COMPLETE_WITH_WARNINGS: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def can_transition(current: JobStatus, new: JobStatus) -> bool:
    """Check whether a job may move from one status to another.

    Re-asserting the current status is allowed and is a no-op.

    Args:
        current: Current job status.
        new: Requested job status.

    Returns:
        True if the transition is allowed.
    """
    return current == new or new in _TRANSITIONS[current]


class BuildMode(str, Enum):
    """Target system flavour."""

    DESKTOP = "desktop"
    SERVER = "server"


class OverlayStatus(str, Enum):
    """How an overlay resolves for a package manager."""

    NATIVE = "native"
    SCRIPT = "script"
    UNKNOWN = "unknown"


class BuildRunner(str, Enum):
    """Where the image build is executed."""

    GITHUB_ACTIONS = "github_actions"
    LOCAL = "local"


@dataclass(frozen=True)
class TestResult:
    """Outcome of a single validation rule."""

    __test__ = False  # not a pytest test class

    name: str
    passed: bool
    message: str

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for JSON serialization."""
        return {"name": self.name, "pass": self.passed, "message": self.message}


@dataclass
class OverlayResolution:
    """Resolution of one overlay id against a package map."""

    overlay_id: str
    status: OverlayStatus
    packages: list[str] = field(default_factory=list)


__all__ = [
    "NAME_PATTERN",
    "TERMINAL_STATUSES",
    "BuildMode",
    "BuildRunner",
    "JobStatus",
    "Name",
    "OverlayResolution",
    "OverlayStatus",
    "TestResult",
    "can_transition",
]
