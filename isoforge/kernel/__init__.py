"""Kernel configuration fragment generation.

This module handles:
- The text generation client (ai)
- AI-backed and deterministic fragment generation (fragment)
"""

from isoforge.kernel.fragment import (
    Fallback,
    Generated,
    KernelConfigResult,
    generate_fallback_config,
    generate_kernel_config,
)

__all__ = [
    "Fallback",
    "Generated",
    "KernelConfigResult",
    "generate_fallback_config",
    "generate_kernel_config",
]
