"""Configuration endpoints."""

import json
from typing import Any

from fastapi import APIRouter, Depends

from isoforge.config import Settings, print_settings_json
from web.deps import get_app_settings

router = APIRouter()


@router.get("")
def get_config(settings: Settings = Depends(get_app_settings)) -> dict[str, Any]:
    """Get effective configuration.

    Secrets are never included.

    Returns:
        Current configuration as JSON.
    """
    config: dict[str, Any] = json.loads(print_settings_json(settings))
    config["ai_enabled"] = bool(settings.anthropic_api_key)
    config["external_runner_enabled"] = bool(
        settings.github_token and settings.github_repo
    )
    return config
