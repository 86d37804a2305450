"""Configuration settings for isoforge.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_data_dir() -> Path:
    """Return the default data directory."""
    return Path.home() / ".local" / "share" / "isoforge"


def _default_storage_dir() -> Path:
    """Return the default artifact store directory."""
    return _default_data_dir() / "storage"


def _default_db_url() -> str:
    """Return the default database URL (SQLite)."""
    db_path = _default_data_dir() / "jobs.sqlite"
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the ISOFORGE_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="ISOFORGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    data_dir: Path = Field(
        default_factory=_default_data_dir,
        description="Root directory for isoforge state",
    )
    storage_dir: Path = Field(
        default_factory=_default_storage_dir,
        description="Root directory of the artifact store",
    )
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Job store database URL",
    )
    catalog_path: Path | None = Field(
        default=None,
        description="YAML package catalog overriding the built-in one",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Kernel config generation
    anthropic_api_key: str | None = Field(
        default=None,
        description="API key for AI kernel config generation (fallback if unset)",
    )
    ai_model: str = Field(
        default="claude-sonnet-4-20250514",
        description="Model used for kernel config generation",
    )
    ai_base_url: str = Field(
        default="https://api.anthropic.com",
        description="Base URL of the text generation API",
    )
    ai_max_tokens: int = Field(
        default=4096,
        ge=256,
        le=16384,
        description="Token ceiling for kernel config generation",
    )
    ai_timeout: int = Field(
        default=120,
        ge=5,
        description="Timeout for the AI request (seconds)",
    )

    # External runner
    github_token: str | None = Field(
        default=None,
        description="Token used to dispatch the image build workflow",
    )
    github_repo: str | None = Field(
        default=None,
        description="Repository hosting the build workflow (owner/repo)",
    )
    github_workflow: str = Field(
        default="build-iso.yml",
        description="Workflow file dispatched for image builds",
    )
    github_ref: str = Field(
        default="main",
        description="Git ref the workflow runs on",
    )
    github_api_url: str = Field(
        default="https://api.github.com",
        description="Base URL of the GitHub REST API",
    )
    public_base_url: str = Field(
        default="http://localhost:8000",
        description="Base address the runner uses for callbacks and uploads",
    )
    trigger_timeout: int = Field(
        default=30,
        ge=1,
        description="Timeout for the workflow dispatch request (seconds)",
    )

    # Callback and upload authentication
    build_secret: str | None = Field(
        default=None,
        description="Shared secret required to upload images",
    )
    require_callback_auth: bool = Field(
        default=False,
        description="Require the shared secret on progress callbacks",
    )

    # Pipeline policy
    job_ttl_days: int = Field(
        default=7,
        ge=1,
        description="Retention window for job records (days)",
    )
    min_kernel_config_lines: int = Field(
        default=10,
        ge=0,
        description="Minimum CONFIG lines for the kernel fragment to be accepted",
    )


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Secrets are redacted.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(
        indent=2,
        exclude={"anthropic_api_key", "github_token", "build_secret"},
    )


__all__ = ["Settings", "get_settings", "print_settings_json"]
