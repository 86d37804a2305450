"""Tests for the external build trigger.

Uses respx to mock the workflow dispatch endpoint.
"""

import json

import httpx
import respx

from isoforge import __version__
from isoforge.builds.trigger import GitHubWorkflowTrigger, build_trigger
from isoforge.config import Settings

DISPATCH_URL = (
    "https://api.github.test/repos/acme/iso-builds/actions/workflows/"
    "build-iso.yml/dispatches"
)


def make_trigger() -> GitHubWorkflowTrigger:
    return GitHubWorkflowTrigger(
        token="ghp_test",
        repo="acme/iso-builds",
        callback_url="https://isoforge.example.com/",
        api_url="https://api.github.test",
        timeout=3,
    )


class TestDispatch:
    """Test GitHubWorkflowTrigger.dispatch."""

    def test_dispatch_url(self) -> None:
        """URL is built from API base, repository and workflow file."""
        assert make_trigger().dispatch_url == DISPATCH_URL

    @respx.mock
    def test_success(self) -> None:
        """A 204 response means the workflow was triggered."""
        route = respx.post(DISPATCH_URL).mock(return_value=httpx.Response(204))

        result = make_trigger().dispatch("job-1")

        assert result.triggered is True
        assert result.status_code == 204
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer ghp_test"
        assert request.headers["Accept"] == "application/vnd.github.v3+json"
        assert request.headers["User-Agent"] == f"isoforge/{__version__}"
        assert json.loads(request.content) == {
            "ref": "main",
            "inputs": {
                "job_id": "job-1",
                "api_url": "https://isoforge.example.com",
            },
        }

    @respx.mock
    def test_rejected(self) -> None:
        """A non-2xx response is not triggered and keeps the reason."""
        respx.post(DISPATCH_URL).mock(
            return_value=httpx.Response(404, json={"message": "Not Found"})
        )

        result = make_trigger().dispatch("job-1")

        assert result.triggered is False
        assert result.status_code == 404
        assert "Not Found" in result.detail

    @respx.mock
    def test_timeout(self) -> None:
        """A timeout is not triggered and is not raised."""
        respx.post(DISPATCH_URL).mock(side_effect=httpx.ConnectTimeout("slow"))

        result = make_trigger().dispatch("job-1")

        assert result.triggered is False
        assert result.detail == "timeout"

    @respx.mock
    def test_transport_error(self) -> None:
        """A connection failure is not triggered and is not raised."""
        respx.post(DISPATCH_URL).mock(side_effect=httpx.ConnectError("refused"))

        assert make_trigger().dispatch("job-1").triggered is False


class TestBuildTrigger:
    """Test trigger construction from settings."""

    def test_disabled_without_credentials(self) -> None:
        """Token and repository are both required."""
        assert build_trigger(Settings(_env_file=None)) is None
        assert build_trigger(Settings(_env_file=None, github_token="t")) is None
        assert build_trigger(Settings(_env_file=None, github_repo="a/b")) is None

    def test_configured(self) -> None:
        """Settings flow into the trigger."""
        trigger = build_trigger(
            Settings(
                _env_file=None,
                github_token="t",
                github_repo="acme/iso-builds",
                github_workflow="custom.yml",
                public_base_url="https://cb.example.com",
            )
        )

        assert isinstance(trigger, GitHubWorkflowTrigger)
        assert trigger.workflow == "custom.yml"
        assert trigger.callback_url == "https://cb.example.com"
