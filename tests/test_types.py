"""Tests for shared types module."""

import pytest

from isoforge.types import (
    TERMINAL_STATUSES,
    BuildMode,
    BuildRunner,
    JobStatus,
    OverlayStatus,
    TestResult,
    can_transition,
)


class TestEnums:
    """Test enum definitions."""

    def test_job_status_values(self) -> None:
        """JobStatus should have expected values."""
        assert JobStatus.BUILDING.value == "building"
        assert JobStatus.BUILDING_ISO.value == "building_iso"
        assert JobStatus.COMPLETE.value == "complete"
        assert JobStatus.COMPLETE_WITH_WARNINGS.value == "complete_with_warnings"
        assert JobStatus.FAILED.value == "failed"

    def test_other_enum_values(self) -> None:
        """Mode, overlay status and runner enums should have expected values."""
        assert BuildMode.SERVER.value == "server"
        assert BuildMode.DESKTOP.value == "desktop"
        assert OverlayStatus.NATIVE.value == "native"
        assert OverlayStatus.SCRIPT.value == "script"
        assert BuildRunner.GITHUB_ACTIONS.value == "github_actions"

    def test_terminal_and_complete(self) -> None:
        """Completed variants and failed are terminal; building ones are not."""
        assert TERMINAL_STATUSES == {
            JobStatus.COMPLETE,
            JobStatus.COMPLETE_WITH_WARNINGS,
            JobStatus.FAILED,
        }
        assert JobStatus.COMPLETE_WITH_WARNINGS.is_complete
        assert not JobStatus.FAILED.is_complete
        assert not JobStatus.BUILDING_ISO.is_terminal


class TestTransitions:
    """Test the job status transition table."""

    @pytest.mark.parametrize(
        ("current", "new"),
        [
            (JobStatus.BUILDING, JobStatus.BUILDING_ISO),
            (JobStatus.BUILDING, JobStatus.COMPLETE),
            (JobStatus.BUILDING, JobStatus.FAILED),
            (JobStatus.BUILDING_ISO, JobStatus.COMPLETE),
            (JobStatus.BUILDING_ISO, JobStatus.COMPLETE_WITH_WARNINGS),
            (JobStatus.BUILDING_ISO, JobStatus.BUILDING_ISO),
        ],
    )
    def test_allowed(self, current: JobStatus, new: JobStatus) -> None:
        """Forward moves and re-assertions are allowed."""
        assert can_transition(current, new)

    @pytest.mark.parametrize(
        ("current", "new"),
        [
            (JobStatus.BUILDING_ISO, JobStatus.BUILDING),
            (JobStatus.COMPLETE, JobStatus.BUILDING),
            (JobStatus.COMPLETE, JobStatus.FAILED),
            (JobStatus.FAILED, JobStatus.COMPLETE),
        ],
    )
    def test_rejected(self, current: JobStatus, new: JobStatus) -> None:
        """Backward moves and leaving a terminal status are rejected."""
        assert not can_transition(current, new)


class TestTestResult:
    """Test TestResult dataclass."""

    def test_to_dict_uses_pass_key(self) -> None:
        """Serialized results use the 'pass' key."""
        result = TestResult(name="kernel_localversion", passed=True, message="ok")
        assert result.to_dict() == {
            "name": "kernel_localversion",
            "pass": True,
            "message": "ok",
        }
