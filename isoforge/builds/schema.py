"""Pydantic schemas for build requests and manifests.

The manifest is the single source of truth for every artifact generated
after submission; it is written once and read back from the artifact store.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from isoforge.types import Name


class BuildRequest(BaseModel):
    """A declarative build request.

    ``distro`` and ``mode`` are free names on purpose: unsupported values
    are accepted and reported by the validation suite rather than rejected.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    distro: Name = Field(description="Target distro id")
    mode: Name = Field(default="desktop", description="desktop or server")
    hardware_raw: str = Field(default="", description="Free-form hardware text")
    ai_mode: bool = Field(default=False, description="Enable detected modules")
    overlays: list[Name] = Field(default_factory=list)
    custom_software: list[Name] = Field(default_factory=list)
    detected_modules: list[Name] = Field(default_factory=list)


class Manifest(BaseModel):
    """Immutable record of one job's resolved build configuration.

    Attributes:
        job_id: Job identifier.
        distro: Target distro id.
        mode: Build mode.
        base_image: Runtime base image for the target rootfs.
        pkg_manager: Package manager id.
        packages: Resolved overlay packages, in overlay order.
        custom_software: Free-form package names.
        overlays: Requested overlay ids.
        modules: Detected kernel modules.
        ai_mode: Whether detected modules are force-enabled.
        ai_model: Model name, ``fallback`` or ``fallback-error: <reason>``.
        kernel_config_lines: Total line count of the kernel fragment.
        created: ISO-8601 UTC creation timestamp.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    job_id: str
    distro: Name
    mode: Name
    base_image: str
    pkg_manager: str
    packages: tuple[Name, ...] = ()
    custom_software: tuple[Name, ...] = ()
    overlays: tuple[Name, ...] = ()
    modules: tuple[Name, ...] = ()
    ai_mode: bool = False
    ai_model: str
    kernel_config_lines: int
    created: str

    def to_json(self) -> str:
        """Serialize for storage as ``manifest.json``."""
        return self.model_dump_json(indent=2)


__all__ = ["BuildRequest", "Manifest"]
