"""Text generation client used for kernel config generation.

The client turns every transport or payload problem into a typed
``GenerationFailure`` so that callers never see raw HTTP responses or
partially parsed JSON.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

import httpx

if TYPE_CHECKING:
    from isoforge.config import Settings

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"

# Failure kinds
FAILURE_TIMEOUT = "timeout"
FAILURE_TRANSPORT = "transport"
FAILURE_HTTP_STATUS = "http_status"
FAILURE_API_ERROR = "api_error"
FAILURE_MALFORMED = "malformed"


@dataclass(frozen=True)
class GeneratedText:
    """Successful generation."""

    model: str
    text: str


@dataclass(frozen=True)
class GenerationFailure:
    """Failed generation with a failure kind and a readable message."""

    kind: str
    message: str

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


GenerationResult = GeneratedText | GenerationFailure


class TextGenerator(Protocol):
    """Capability to produce text from one system instruction and one user turn."""

    def generate(self, system: str, user: str, max_tokens: int) -> GenerationResult:
        """Generate a response; never raises for network or payload errors."""
        ...


class AnthropicTextGenerator:
    """TextGenerator backed by the Anthropic Messages API."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://api.anthropic.com",
        timeout: float = 120,
        client: httpx.Client | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    def _post(self, payload: dict[str, Any]) -> httpx.Response:
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        url = f"{self.base_url}/v1/messages"
        if self._client is not None:
            return self._client.post(
                url, json=payload, headers=headers, timeout=self.timeout
            )
        with httpx.Client() as client:
            return client.post(url, json=payload, headers=headers, timeout=self.timeout)

    def generate(self, system: str, user: str, max_tokens: int) -> GenerationResult:
        """Send one system instruction and one user turn.

        Args:
            system: System instruction.
            user: User message.
            max_tokens: Token ceiling for the response.

        Returns:
            GeneratedText on success, GenerationFailure otherwise.
        """
        payload = {
            "model": self.model,
            "max_tokens": max_tokens,
            "system": system,
            "messages": [{"role": "user", "content": user}],
        }

        try:
            response = self._post(payload)
        except httpx.TimeoutException:
            return GenerationFailure(
                FAILURE_TIMEOUT, f"no response within {self.timeout}s"
            )
        except httpx.RequestError as e:
            return GenerationFailure(FAILURE_TRANSPORT, str(e))

        try:
            data = response.json()
        except ValueError:
            data = None

        if isinstance(data, dict) and isinstance(data.get("error"), dict):
            message = data["error"].get("message") or str(data["error"])
            return GenerationFailure(FAILURE_API_ERROR, str(message))

        if response.status_code >= 400:
            return GenerationFailure(
                FAILURE_HTTP_STATUS,
                f"{response.status_code} {response.reason_phrase}",
            )

        text = _extract_text(data)
        if text is None:
            return GenerationFailure(FAILURE_MALFORMED, "response has no text content")

        logger.debug("Generated %d characters with %s", len(text), self.model)
        return GeneratedText(model=self.model, text=text)


def _extract_text(data: Any) -> str | None:
    """Pull the first text block out of a Messages API response."""
    if not isinstance(data, dict):
        return None
    content = data.get("content")
    if not isinstance(content, list) or not content:
        return None
    first = content[0]
    if not isinstance(first, dict):
        return None
    text = first.get("text")
    if not isinstance(text, str) or not text.strip():
        return None
    return text


def build_text_generator(settings: Settings) -> TextGenerator | None:
    """Create the configured text generator.

    Args:
        settings: Application settings.

    Returns:
        A TextGenerator, or None when no credential is configured.
    """
    if not settings.anthropic_api_key:
        return None
    return AnthropicTextGenerator(
        api_key=settings.anthropic_api_key,
        model=settings.ai_model,
        base_url=settings.ai_base_url,
        timeout=settings.ai_timeout,
    )


__all__ = [
    "FAILURE_API_ERROR",
    "FAILURE_HTTP_STATUS",
    "FAILURE_MALFORMED",
    "FAILURE_TIMEOUT",
    "FAILURE_TRANSPORT",
    "AnthropicTextGenerator",
    "GeneratedText",
    "GenerationFailure",
    "GenerationResult",
    "TextGenerator",
    "build_text_generator",
]
