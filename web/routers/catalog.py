"""Package catalog endpoints.

- GET /catalog/distros - List supported distros
- POST /catalog/validate-overlays - Dry-run overlay and custom package check
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from isoforge.catalog.models import PackageCatalog
from isoforge.catalog.resolver import validate_overlays
from web.deps import get_catalog

router = APIRouter()


class ValidateOverlaysRequest(BaseModel):
    """Request body for the overlay dry run."""

    distro: str = "debian"
    overlays: list[str] = Field(default_factory=list)
    custom_software: list[str] = Field(default_factory=list)


@router.get("/distros")
def list_distros_endpoint(
    catalog: PackageCatalog = Depends(get_catalog),
) -> list[dict[str, Any]]:
    """List supported distros with their package manager and base image."""
    return [d.model_dump() for d in catalog.distros]


@router.post("/validate-overlays")
def validate_overlays_endpoint(
    body: ValidateOverlaysRequest,
    catalog: PackageCatalog = Depends(get_catalog),
) -> dict[str, Any]:
    """Report how each overlay and custom package would be installed.

    Args:
        body: Distro, overlays and custom software to check.
        catalog: Package catalog.

    Returns:
        Per-overlay status and predicted install commands.
    """
    return validate_overlays(catalog, body.distro, body.overlays, body.custom_software)
