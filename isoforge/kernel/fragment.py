"""Kernel configuration fragment generation.

A fragment is merged on top of the x86_64 defconfig with
``scripts/kconfig/merge_config.sh``; it only lists what differs from the
default. The fragment comes from the text generator when one is configured
and from a deterministic rule set otherwise (or when generation fails).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from isoforge.kernel.ai import GeneratedText, TextGenerator
from isoforge.types import BuildMode

logger = logging.getLogger(__name__)

LOCALVERSION_LINE = 'CONFIG_LOCALVERSION="-isoforge"'
FALLBACK_MODEL = "fallback"
REASON_NO_CREDENTIALS = "no_credentials"

KERNEL_CONFIG_PROMPT = f"""You are a Linux kernel configuration expert. Generate a kernel .config FRAGMENT that will be merged ON TOP of x86_64 defconfig using scripts/kconfig/merge_config.sh.

The base defconfig already includes standard drivers (NVMe, AHCI, USB, e1000e, igb, etc). Your job is to ADD hardware-specific drivers and REMOVE unnecessary subsystems based on the user's hardware and build mode.

Rules:
- Output ONLY config lines. No prose, no comments, no explanations.
- To ENABLE: CONFIG_xxx=y or CONFIG_xxx=m
- To DISABLE: # CONFIG_xxx is not set
- Include {LOCALVERSION_LINE}
- For SERVER mode: disable CONFIG_DRM, CONFIG_SND, CONFIG_WLAN, CONFIG_BT. Enable CONFIG_NETFILTER=y, CONFIG_CGROUPS=y, CONFIG_NAMESPACES=y, CONFIG_NET_NS=y, CONFIG_VETH=y, CONFIG_BRIDGE=y, CONFIG_NF_NAT=y, CONFIG_OVERLAY_FS=y.
- For DESKTOP mode: enable the correct GPU driver based on hardware (CONFIG_DRM_I915=m for Intel, CONFIG_DRM_AMDGPU=m for AMD, CONFIG_DRM_NOUVEAU=m for NVIDIA). Enable CONFIG_SND_HDA_INTEL=m, CONFIG_WLAN=y, CONFIG_BT=y, CONFIG_INPUT_EVDEV=y.
- Map PCI vendor IDs to drivers: 8086=Intel(i915/e1000e/iwlwifi), 1002=AMD(amdgpu), 10de=NVIDIA(nouveau), 14e4=Broadcom(tg3/brcmfmac), 168c=Qualcomm(ath9k/ath10k), 10ec=Realtek(r8169/rtw88)
- For detected modules, enable the corresponding CONFIG_ option.
- Target 30-60 lines. Only output what DIFFERS from defconfig."""

_SERVER_LINES = [
    "# CONFIG_DRM is not set",
    "# CONFIG_SND is not set",
    "# CONFIG_WLAN is not set",
    "# CONFIG_BT is not set",
    "CONFIG_NETFILTER=y",
    "CONFIG_CGROUPS=y",
    "CONFIG_NAMESPACES=y",
    "CONFIG_NET_NS=y",
    "CONFIG_VETH=y",
    "CONFIG_BRIDGE=y",
    "CONFIG_NF_NAT=y",
    "CONFIG_OVERLAY_FS=y",
]

_DESKTOP_LINES = [
    "CONFIG_DRM_I915=m",
    "CONFIG_DRM_AMDGPU=m",
    "CONFIG_DRM_NOUVEAU=m",
    "CONFIG_SND_HDA_INTEL=m",
    "CONFIG_WLAN=y",
    "CONFIG_BT=y",
    "CONFIG_INPUT_EVDEV=y",
]

_NOT_SET_RE = re.compile(r"^#\s*(CONFIG_[A-Za-z0-9_]+) is not set\s*$")
_ASSIGN_RE = re.compile(r"^(CONFIG_[A-Za-z0-9_]+)=(.*)$")


@dataclass(frozen=True)
class Generated:
    """Fragment produced by the text generator."""

    model: str
    text: str

    @property
    def model_label(self) -> str:
        return self.model


@dataclass(frozen=True)
class Fallback:
    """Fragment produced by the deterministic rule set."""

    reason: str
    text: str

    @property
    def model_label(self) -> str:
        if self.reason == REASON_NO_CREDENTIALS:
            return FALLBACK_MODEL
        return f"{FALLBACK_MODEL}-error: {self.reason}"


KernelConfigResult = Generated | Fallback


def generate_fallback_config(mode: str, modules: list[str]) -> str:
    """Generate a kernel config fragment without AI.

    Args:
        mode: Build mode; anything other than ``server`` gets desktop options.
        modules: Detected kernel module names.

    Returns:
        Fragment text, one option per line.
    """
    lines = [LOCALVERSION_LINE]
    if mode == BuildMode.SERVER.value:
        lines.extend(_SERVER_LINES)
    else:
        lines.extend(_DESKTOP_LINES)
    for module in modules:
        lines.append(f"CONFIG_{module.upper()}=m")
    return "\n".join(lines)


def build_user_prompt(hardware: str, distro: str, mode: str, modules: list[str]) -> str:
    """Build the user turn carrying the hardware and build context."""
    hardware_text = hardware or "No hardware info provided, use generic defaults"
    module_text = ", ".join(modules) or "none"
    return (
        f"Hardware info:\n{hardware_text}\n\n"
        f"Distro: {distro}\n"
        f"Mode: {mode}\n"
        f"Detected modules: {module_text}\n\n"
        "Generate the kernel .config fragment."
    )


def generate_kernel_config(
    hardware: str,
    distro: str,
    mode: str,
    modules: list[str],
    generator: TextGenerator | None = None,
    max_tokens: int = 4096,
) -> KernelConfigResult:
    """Generate a kernel config fragment.

    Uses the text generator when one is configured. A missing generator is
    the normal no-credential path; a failed generation is logged and replaced
    by the deterministic fragment. This function does not raise for either.

    Args:
        hardware: Raw hardware description (lspci output and similar).
        distro: Target distro id.
        mode: Build mode.
        modules: Detected kernel module names.
        generator: Optional text generator.
        max_tokens: Token ceiling for the generated fragment.

    Returns:
        Generated or Fallback result.
    """
    if generator is None:
        logger.debug("No text generator configured, using fallback kernel config")
        return Fallback(
            reason=REASON_NO_CREDENTIALS,
            text=generate_fallback_config(mode, modules),
        )

    try:
        result = generator.generate(
            KERNEL_CONFIG_PROMPT,
            build_user_prompt(hardware, distro, mode, modules),
            max_tokens,
        )
    except Exception as e:
        logger.warning(
            "Kernel config generator raised %s, using fallback", e, exc_info=True
        )
        return Fallback(
            reason=f"exception: {e}", text=generate_fallback_config(mode, modules)
        )

    if isinstance(result, GeneratedText):
        return Generated(model=result.model, text=result.text)

    logger.warning("Kernel config generation failed (%s), using fallback", result)
    return Fallback(reason=str(result), text=generate_fallback_config(mode, modules))


def parse_fragment(text: str) -> dict[str, str]:
    """Parse a fragment into option -> value.

    ``# CONFIG_X is not set`` is reported as ``"n"``. Other comments and
    blank lines are ignored; later lines override earlier ones.

    Args:
        text: Fragment text.

    Returns:
        Mapping of option name to raw value.
    """
    options: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        not_set = _NOT_SET_RE.match(line)
        if not_set:
            options[not_set.group(1)] = "n"
            continue
        assign = _ASSIGN_RE.match(line)
        if assign:
            options[assign.group(1)] = assign.group(2).strip()
    return options


def config_lines(text: str) -> list[str]:
    """Return the lines that set or unset an option."""
    return [
        line
        for line in text.split("\n")
        if line.startswith("CONFIG_") or line.startswith("# CONFIG_")
    ]


def count_lines(text: str) -> int:
    """Total line count of a fragment, as recorded in the manifest."""
    return len(text.split("\n"))


__all__ = [
    "FALLBACK_MODEL",
    "KERNEL_CONFIG_PROMPT",
    "LOCALVERSION_LINE",
    "REASON_NO_CREDENTIALS",
    "Fallback",
    "Generated",
    "KernelConfigResult",
    "build_user_prompt",
    "config_lines",
    "count_lines",
    "generate_fallback_config",
    "generate_kernel_config",
    "parse_fragment",
]
