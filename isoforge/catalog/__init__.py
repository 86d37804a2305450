"""Package catalog and resolver.

This module handles:
- Distro to package manager and base image mapping
- Overlay to package list mapping per package manager
- Resolution of overlays and custom software into install steps
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from isoforge.catalog.data import DEFAULT_CATALOG
from isoforge.catalog.models import PackageCatalog, load_catalog

if TYPE_CHECKING:
    from isoforge.config import Settings


def get_catalog(settings: Settings | None = None) -> PackageCatalog:
    """Return the catalog configured for this deployment.

    Args:
        settings: Application settings; a YAML catalog path overrides the
            built-in catalog.

    Returns:
        PackageCatalog instance.
    """
    if settings is not None and settings.catalog_path is not None:
        return load_catalog(settings.catalog_path)
    return DEFAULT_CATALOG


__all__ = ["DEFAULT_CATALOG", "PackageCatalog", "get_catalog", "load_catalog"]
