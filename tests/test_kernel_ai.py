"""Tests for the text generation client.

Uses respx to mock the Messages API.
"""

import json

import httpx
import respx

from isoforge.config import Settings
from isoforge.kernel.ai import (
    ANTHROPIC_VERSION,
    FAILURE_API_ERROR,
    FAILURE_HTTP_STATUS,
    FAILURE_MALFORMED,
    FAILURE_TIMEOUT,
    FAILURE_TRANSPORT,
    AnthropicTextGenerator,
    GeneratedText,
    GenerationFailure,
    build_text_generator,
)

BASE_URL = "https://ai.test"
MESSAGES_URL = f"{BASE_URL}/v1/messages"


def make_generator() -> AnthropicTextGenerator:
    return AnthropicTextGenerator(
        api_key="test-key", model="claude-test", base_url=BASE_URL, timeout=5
    )


class TestGenerate:
    """Test AnthropicTextGenerator.generate."""

    @respx.mock
    def test_success(self) -> None:
        """First text block of a successful response is returned."""
        route = respx.post(MESSAGES_URL).mock(
            return_value=httpx.Response(
                200,
                json={"content": [{"type": "text", "text": "CONFIG_FOO=y"}]},
            )
        )

        result = make_generator().generate("system", "user", 1024)

        assert result == GeneratedText(model="claude-test", text="CONFIG_FOO=y")
        request = route.calls.last.request
        assert request.headers["x-api-key"] == "test-key"
        assert request.headers["anthropic-version"] == ANTHROPIC_VERSION
        body = json.loads(request.content)
        assert body["model"] == "claude-test"
        assert body["max_tokens"] == 1024
        assert body["system"] == "system"
        assert body["messages"] == [{"role": "user", "content": "user"}]

    @respx.mock
    def test_error_payload(self) -> None:
        """An error object in the body is an api_error failure."""
        respx.post(MESSAGES_URL).mock(
            return_value=httpx.Response(
                400,
                json={"type": "error", "error": {"message": "invalid model"}},
            )
        )

        result = make_generator().generate("s", "u", 100)

        assert result == GenerationFailure(FAILURE_API_ERROR, "invalid model")

    @respx.mock
    def test_http_status(self) -> None:
        """A non-JSON error response is an http_status failure."""
        respx.post(MESSAGES_URL).mock(return_value=httpx.Response(503, text="down"))

        result = make_generator().generate("s", "u", 100)

        assert isinstance(result, GenerationFailure)
        assert result.kind == FAILURE_HTTP_STATUS
        assert result.message.startswith("503")

    @respx.mock
    def test_empty_content_is_malformed(self) -> None:
        """A response without usable text is malformed."""
        respx.post(MESSAGES_URL).mock(
            return_value=httpx.Response(200, json={"content": [{"text": "  "}]})
        )

        result = make_generator().generate("s", "u", 100)

        assert isinstance(result, GenerationFailure)
        assert result.kind == FAILURE_MALFORMED

    @respx.mock
    def test_timeout(self) -> None:
        """A timeout is reported, not raised."""
        respx.post(MESSAGES_URL).mock(side_effect=httpx.ReadTimeout("slow"))

        result = make_generator().generate("s", "u", 100)

        assert isinstance(result, GenerationFailure)
        assert result.kind == FAILURE_TIMEOUT
        assert str(result) == "timeout: no response within 5s"

    @respx.mock
    def test_transport_error(self) -> None:
        """A connection error is reported, not raised."""
        respx.post(MESSAGES_URL).mock(side_effect=httpx.ConnectError("refused"))

        result = make_generator().generate("s", "u", 100)

        assert isinstance(result, GenerationFailure)
        assert result.kind == FAILURE_TRANSPORT


class TestBuildTextGenerator:
    """Test generator construction from settings."""

    def test_none_without_key(self) -> None:
        """No credential means no generator."""
        assert build_text_generator(Settings(_env_file=None)) is None

    def test_with_key(self) -> None:
        """A credential builds a configured generator."""
        settings = Settings(
            _env_file=None,
            anthropic_api_key="k",
            ai_model="claude-x",
            ai_base_url="https://ai.test/",
        )
        generator = build_text_generator(settings)

        assert isinstance(generator, AnthropicTextGenerator)
        assert generator.model == "claude-x"
        assert generator.base_url == "https://ai.test"
