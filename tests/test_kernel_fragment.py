"""Tests for kernel config fragment generation."""

from dataclasses import dataclass, field

from isoforge.kernel.ai import GeneratedText, GenerationFailure, GenerationResult
from isoforge.kernel.fragment import (
    FALLBACK_MODEL,
    KERNEL_CONFIG_PROMPT,
    LOCALVERSION_LINE,
    Fallback,
    Generated,
    build_user_prompt,
    config_lines,
    count_lines,
    generate_fallback_config,
    generate_kernel_config,
    parse_fragment,
)


@dataclass
class StubGenerator:
    """In-memory TextGenerator returning a canned result."""

    result: GenerationResult
    calls: list[tuple[str, str, int]] = field(default_factory=list)

    def generate(self, system: str, user: str, max_tokens: int) -> GenerationResult:
        self.calls.append((system, user, max_tokens))
        return self.result


class RaisingGenerator:
    """TextGenerator whose client blows up instead of returning a failure."""

    def generate(self, system: str, user: str, max_tokens: int) -> GenerationResult:
        raise RuntimeError("sdk exploded")


class TestFallbackConfig:
    """Test the deterministic fragment."""

    def test_server_with_modules(self) -> None:
        """Server fragment disables desktop subsystems and enables modules."""
        text = generate_fallback_config("server", ["i915", "nvme"])
        lines = text.split("\n")

        assert lines[0] == LOCALVERSION_LINE
        assert "# CONFIG_DRM is not set" in lines
        assert "# CONFIG_SND is not set" in lines
        assert "CONFIG_NETFILTER=y" in lines
        assert "CONFIG_OVERLAY_FS=y" in lines
        assert lines[-2:] == ["CONFIG_I915=m", "CONFIG_NVME=m"]
        assert len(lines) == 15
        assert not text.endswith("\n")

    def test_desktop(self) -> None:
        """Desktop fragment enables GPU, sound, wireless and input drivers."""
        lines = generate_fallback_config("desktop", []).split("\n")

        assert lines[0] == LOCALVERSION_LINE
        assert "CONFIG_DRM_I915=m" in lines
        assert "CONFIG_SND_HDA_INTEL=m" in lines
        assert "CONFIG_INPUT_EVDEV=y" in lines
        assert len(lines) == 8

    def test_unknown_mode_is_desktop(self) -> None:
        """Any mode other than server gets the desktop options."""
        assert generate_fallback_config("kiosk", []) == generate_fallback_config(
            "desktop", []
        )

    def test_deterministic(self) -> None:
        """Identical inputs give byte-identical output."""
        first = generate_fallback_config("server", ["r8169"])
        assert first == generate_fallback_config("server", ["r8169"])


class TestGenerateKernelConfig:
    """Test generator selection and fallback handling."""

    def test_no_generator_uses_fallback(self) -> None:
        """A missing generator is the plain fallback path."""
        result = generate_kernel_config("", "debian", "server", ["nvme"])

        assert isinstance(result, Fallback)
        assert result.model_label == FALLBACK_MODEL
        assert result.text == generate_fallback_config("server", ["nvme"])

    def test_generated(self) -> None:
        """A successful generation is returned as-is with its model."""
        generator = StubGenerator(
            GeneratedText(model="claude-test", text="CONFIG_FOO=y\nCONFIG_BAR=m")
        )
        result = generate_kernel_config(
            "00:02.0 VGA compatible controller: Intel",
            "debian",
            "desktop",
            [],
            generator,
            max_tokens=2048,
        )

        assert isinstance(result, Generated)
        assert result.model_label == "claude-test"
        assert result.text == "CONFIG_FOO=y\nCONFIG_BAR=m"
        system, user, max_tokens = generator.calls[0]
        assert system == KERNEL_CONFIG_PROMPT
        assert "Intel" in user
        assert max_tokens == 2048

    def test_failure_falls_back_with_reason(self) -> None:
        """A failed generation yields the fallback with the reason recorded."""
        generator = StubGenerator(GenerationFailure("timeout", "no response"))
        result = generate_kernel_config("", "rocky", "server", [], generator)

        assert isinstance(result, Fallback)
        assert result.model_label == "fallback-error: timeout: no response"
        assert result.text == generate_fallback_config("server", [])

    def test_raising_generator_falls_back(self) -> None:
        """A generator that raises is treated like any other failure."""
        result = generate_kernel_config(
            "", "debian", "server", ["nvme"], RaisingGenerator()
        )

        assert isinstance(result, Fallback)
        assert result.model_label == "fallback-error: exception: sdk exploded"
        assert result.text == generate_fallback_config("server", ["nvme"])


class TestUserPrompt:
    """Test the user turn sent to the generator."""

    def test_defaults_when_empty(self) -> None:
        """Empty hardware and modules get placeholder text."""
        prompt = build_user_prompt("", "nixos", "desktop", [])
        assert "No hardware info provided" in prompt
        assert "Detected modules: none" in prompt
        assert "Distro: nixos" in prompt

    def test_modules_listed(self) -> None:
        """Modules are listed comma-separated."""
        prompt = build_user_prompt("lspci", "debian", "server", ["i915", "nvme"])
        assert "Detected modules: i915, nvme" in prompt


class TestFragmentParsing:
    """Test fragment parsing helpers."""

    def test_parse_fragment(self) -> None:
        """Assignments and not-set markers are parsed; prose is ignored."""
        options = parse_fragment(
            "CONFIG_A=y\n# CONFIG_B is not set\n# a comment\n\nCONFIG_C=m\nCONFIG_A=n"
        )
        assert options == {"CONFIG_A": "n", "CONFIG_B": "n", "CONFIG_C": "m"}

    def test_config_lines(self) -> None:
        """Only option lines are counted."""
        text = "CONFIG_A=y\n# CONFIG_B is not set\n# note\nfoo"
        assert config_lines(text) == ["CONFIG_A=y", "# CONFIG_B is not set"]

    def test_count_lines(self) -> None:
        """Line count includes every line of the fragment."""
        assert count_lines("a\nb\nc") == 3
        assert count_lines("a\nb\n") == 3
