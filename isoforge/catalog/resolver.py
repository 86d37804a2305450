"""Package resolution for overlays and custom software.

Resolution never fails for data-shape reasons: unknown overlays contribute
nothing here and are reported by the validation suite instead.
"""

from __future__ import annotations

from typing import Any

from isoforge.catalog.models import PackageCatalog
from isoforge.types import OverlayResolution, OverlayStatus


def resolve_packages(
    catalog: PackageCatalog,
    pkg_manager: str,
    overlays: list[str],
) -> list[str]:
    """Resolve overlay ids into a flat package list.

    Input order is preserved and packages shared between overlays are
    repeated, not deduplicated.

    Args:
        catalog: Package catalog.
        pkg_manager: Package manager id (apt, dnf, nix).
        overlays: Ordered overlay ids.

    Returns:
        Concatenated package names.
    """
    pkg_map = catalog.package_map(pkg_manager)
    packages: list[str] = []
    for overlay_id in overlays:
        packages.extend(pkg_map.get(overlay_id, []))
    return packages


def classify_overlay(
    catalog: PackageCatalog,
    pkg_manager: str,
    overlay_id: str,
) -> OverlayResolution:
    """Classify one overlay as native, script-installed or unknown.

    Args:
        catalog: Package catalog.
        pkg_manager: Package manager id.
        overlay_id: Overlay id to look up.

    Returns:
        OverlayResolution for the overlay.
    """
    pkg_map = catalog.package_map(pkg_manager)
    if overlay_id not in pkg_map:
        return OverlayResolution(overlay_id, OverlayStatus.UNKNOWN)
    packages = list(pkg_map[overlay_id])
    if not packages:
        return OverlayResolution(overlay_id, OverlayStatus.SCRIPT)
    return OverlayResolution(overlay_id, OverlayStatus.NATIVE, packages)


def script_overlays(
    catalog: PackageCatalog,
    pkg_manager: str,
    overlays: list[str],
) -> list[str]:
    """Return the overlays that are installed out of band, in input order."""
    return [
        overlay_id
        for overlay_id in overlays
        if classify_overlay(catalog, pkg_manager, overlay_id).status
        == OverlayStatus.SCRIPT
    ]


def custom_install_command(pkg_manager: str, name: str) -> str:
    """Predict the install command for a custom package name.

    Args:
        pkg_manager: Package manager id.
        name: Package name as typed by the user.

    Returns:
        Shell command that installs the package.
    """
    if pkg_manager == "nix":
        return f"nix-env -iA nixpkgs.{name}"
    if pkg_manager == "dnf":
        return f"dnf install -y {name}"
    return f"DEBIAN_FRONTEND=noninteractive apt-get install -y {name}"


def validate_overlays(
    catalog: PackageCatalog,
    distro: str,
    overlays: list[str],
    custom_software: list[str] | None = None,
) -> dict[str, Any]:
    """Dry-run report of how overlays and custom software will be installed.

    Args:
        catalog: Package catalog.
        distro: Target distro id.
        overlays: Overlay ids to check.
        custom_software: Custom package names.

    Returns:
        Dictionary with per-overlay status and per-package install commands.
    """
    pkg_manager = catalog.pkg_manager_for(distro)

    overlay_results: list[dict[str, Any]] = []
    for overlay_id in overlays:
        resolution = classify_overlay(catalog, pkg_manager, overlay_id)
        if resolution.status == OverlayStatus.UNKNOWN:
            note = "Package mapping not found, will attempt install"
        elif resolution.status == OverlayStatus.SCRIPT:
            note = "Installed via external script/repo"
        else:
            note = f"{len(resolution.packages)} package(s) via {pkg_manager}"
        overlay_results.append(
            {
                "id": overlay_id,
                "status": resolution.status.value,
                "packages": resolution.packages,
                "note": note,
            }
        )

    custom_results = [
        {
            "name": name,
            "status": "custom",
            "note": f"Will attempt: {custom_install_command(pkg_manager, name)}",
        }
        for name in custom_software or []
    ]

    return {
        "distro": distro,
        "pkg_manager": pkg_manager,
        "overlays": overlay_results,
        "custom_software": custom_results,
    }


__all__ = [
    "classify_overlay",
    "custom_install_command",
    "resolve_packages",
    "script_overlays",
    "validate_overlays",
]
