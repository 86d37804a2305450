"""External image build trigger.

Dispatches a GitHub Actions workflow that runs the generated build and
uploads the image back to this service. Dispatch is fire-and-forget: any
non-2xx response, timeout or transport error is logged and reported as
not triggered, and it is never retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import httpx

from isoforge import __version__

if TYPE_CHECKING:
    from isoforge.config import Settings

logger = logging.getLogger(__name__)

GITHUB_ACCEPT = "application/vnd.github.v3+json"
USER_AGENT = f"isoforge/{__version__}"


@dataclass(frozen=True)
class TriggerResult:
    """Outcome of one dispatch attempt."""

    triggered: bool
    status_code: int | None = None
    detail: str = ""


class BuildTrigger(Protocol):
    """Capability to start an external image build for a job."""

    def dispatch(self, job_id: str) -> TriggerResult:
        """Start the build; never raises for network errors."""
        ...


class GitHubWorkflowTrigger:
    """BuildTrigger backed by the workflow_dispatch REST endpoint."""

    def __init__(
        self,
        token: str,
        repo: str,
        workflow: str = "build-iso.yml",
        ref: str = "main",
        callback_url: str = "http://localhost:8000",
        api_url: str = "https://api.github.com",
        timeout: float = 30,
        client: httpx.Client | None = None,
    ) -> None:
        self.token = token
        self.repo = repo
        self.workflow = workflow
        self.ref = ref
        self.callback_url = callback_url.rstrip("/")
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    @property
    def dispatch_url(self) -> str:
        return (
            f"{self.api_url}/repos/{self.repo}/actions/workflows/"
            f"{self.workflow}/dispatches"
        )

    def _post(self, payload: dict[str, object]) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Accept": GITHUB_ACCEPT,
            "User-Agent": USER_AGENT,
        }
        if self._client is not None:
            return self._client.post(
                self.dispatch_url, json=payload, headers=headers, timeout=self.timeout
            )
        with httpx.Client() as client:
            return client.post(
                self.dispatch_url, json=payload, headers=headers, timeout=self.timeout
            )

    def dispatch(self, job_id: str) -> TriggerResult:
        """Dispatch the image build workflow for a job.

        Args:
            job_id: Job to build.

        Returns:
            TriggerResult; ``triggered`` is True only for a 2xx response.
        """
        payload = {
            "ref": self.ref,
            "inputs": {"job_id": job_id, "api_url": self.callback_url},
        }
        try:
            response = self._post(payload)
        except httpx.TimeoutException:
            logger.error(
                "Workflow dispatch for %s timed out after %ss", job_id, self.timeout
            )
            return TriggerResult(False, detail="timeout")
        except httpx.RequestError as e:
            logger.error("Workflow dispatch for %s failed: %s", job_id, e)
            return TriggerResult(False, detail=str(e))

        if response.is_success:
            logger.info("Workflow %s dispatched for build %s", self.workflow, job_id)
            return TriggerResult(True, response.status_code)

        logger.error(
            "Workflow dispatch for %s rejected (%d): %s",
            job_id,
            response.status_code,
            response.text[:500],
        )
        return TriggerResult(False, response.status_code, response.text[:500])


def build_trigger(settings: Settings) -> BuildTrigger | None:
    """Create the configured build trigger.

    Args:
        settings: Application settings.

    Returns:
        A BuildTrigger, or None when token or repository is not configured.
    """
    if not settings.github_token or not settings.github_repo:
        logger.info("External build runner not configured, builds complete locally")
        return None
    return GitHubWorkflowTrigger(
        token=settings.github_token,
        repo=settings.github_repo,
        workflow=settings.github_workflow,
        ref=settings.github_ref,
        callback_url=settings.public_base_url,
        api_url=settings.github_api_url,
        timeout=settings.trigger_timeout,
    )


__all__ = [
    "BuildTrigger",
    "GitHubWorkflowTrigger",
    "TriggerResult",
    "build_trigger",
]
