"""Configuration models."""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Tracker settings use their usual names (``YOUTRACK_API_TOKEN``,
    ``YOUTRACK_URL``); the rest are prefixed with ``COMMITTRACER_``.
    """

    model_config = SettingsConfigDict(
        env_prefix="COMMITTRACER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Issue tracker
    youtrack_url: str = Field(
        default="https://youtrack.jetbrains.com",
        validation_alias="YOUTRACK_URL",
        description="Base URL of the YouTrack instance",
    )
    youtrack_api_token: Optional[str] = Field(
        default=None,
        validation_alias="YOUTRACK_API_TOKEN",
        description="Permanent token used as a Bearer credential",
    )
    request_timeout: float = Field(
        default=10.0,
        description="Per-request timeout for tracker calls, in seconds",
    )

    # Classification cache
    cache_dir: Path = Field(
        default=Path.home() / ".committracer" / "cache",
        description="Directory holding the persistent classification stores",
    )
    enable_persistent_cache: bool = Field(
        default=True,
        description="Keep classifications on disk across runs",
    )

    # Processing
    max_workers: int = Field(default=8, description="Commits processed concurrently")

    # Logging
    log_level: str = "INFO"
