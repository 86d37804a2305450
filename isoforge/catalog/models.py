"""Pydantic models for the package catalog.

The catalog is read-only configuration injected into the resolver and the
artifact generators. It can be loaded from YAML so that alternate package
maps can be substituted without code changes.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from isoforge.types import Name

logger = logging.getLogger(__name__)

DEFAULT_PKG_MANAGER = "apt"
DEFAULT_BASE_IMAGE = "debian:12-slim"


class CatalogLoadError(Exception):
    """Raised when a catalog file cannot be read or validated."""

    def __init__(self, message: str, code: str = "catalog_invalid") -> None:
        super().__init__(message)
        self.code = code


class DistroSchema(BaseModel):
    """A supported target distribution.

    Attributes:
        id: Stable distro identifier.
        name: Display name.
        tagline: Short description.
        pkg_manager: Package manager id used for package names.
        base_image: Container image the target rootfs is based on.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(min_length=1)
    name: str
    tagline: str = ""
    pkg_manager: str
    base_image: str


class ScriptInstaller(BaseModel):
    """Out-of-band install step for an overlay without native packages."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    label: str
    command: str


class PackageCatalog(BaseModel):
    """Distros, overlay package maps and out-of-band installers.

    ``packages[pkg_manager][overlay_id]`` is the concrete package list. An
    empty list means the overlay is installed by a script or extra repository;
    a missing key means the overlay is unknown for that package manager.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    build_image: str = Field(
        default="debian:12",
        description="Fixed base image of the build environment",
    )
    distros: list[DistroSchema]
    packages: dict[str, dict[str, list[Name]]]
    script_installers: dict[str, ScriptInstaller] = Field(default_factory=dict)

    def get_distro(self, distro_id: str) -> DistroSchema | None:
        """Look up a distro by id."""
        for distro in self.distros:
            if distro.id == distro_id:
                return distro
        return None

    def distro_ids(self) -> list[str]:
        """Return the supported distro ids in catalog order."""
        return [d.id for d in self.distros]

    def pkg_manager_for(self, distro_id: str) -> str:
        """Package manager for a distro, defaulting to apt."""
        distro = self.get_distro(distro_id)
        return distro.pkg_manager if distro else DEFAULT_PKG_MANAGER

    def base_image_for(self, distro_id: str) -> str:
        """Runtime base image for a distro, defaulting to Debian slim."""
        distro = self.get_distro(distro_id)
        return distro.base_image if distro else DEFAULT_BASE_IMAGE

    def package_map(self, pkg_manager: str) -> dict[str, list[str]]:
        """Overlay package map for a package manager (empty if unknown)."""
        return self.packages.get(pkg_manager, {})


def load_catalog(path: Path) -> PackageCatalog:
    """Load and validate a catalog from a YAML file.

    Args:
        path: Path to the YAML file.

    Returns:
        Validated PackageCatalog.

    Raises:
        CatalogLoadError: If the file cannot be read, parsed or validated.
    """
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise CatalogLoadError(
            f"Cannot read catalog {path}: {e}", code="catalog_unreadable"
        ) from e
    except yaml.YAMLError as e:
        raise CatalogLoadError(f"Invalid YAML in catalog {path}: {e}") from e

    if not isinstance(data, dict):
        raise CatalogLoadError(f"Catalog {path} must be a mapping")

    try:
        catalog = PackageCatalog.model_validate(data)
    except ValidationError as e:
        raise CatalogLoadError(f"Catalog {path} failed validation: {e}") from e

    logger.info(
        "Loaded catalog from %s (%d distros, %d package managers)",
        path,
        len(catalog.distros),
        len(catalog.packages),
    )
    return catalog


__all__ = [
    "DEFAULT_BASE_IMAGE",
    "DEFAULT_PKG_MANAGER",
    "CatalogLoadError",
    "DistroSchema",
    "PackageCatalog",
    "ScriptInstaller",
    "load_catalog",
]
