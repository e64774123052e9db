"""Configuration settings for boxbuild.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PLAN_FILE = "Boxfile"


def _default_cache_db_url() -> str:
    """Return the default build cache database URL (SQLite)."""
    db_path = Path.home() / ".local" / "share" / "boxbuild" / "cache.sqlite"
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the BOX_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="BOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Build cache
    cache: bool = Field(
        default=True,
        description="Use the layer cache for builds",
    )
    persist_cache: bool = Field(
        default=True,
        description="Persist cache entries across runs in the cache database",
    )
    cache_db_url: str = Field(
        default_factory=_default_cache_db_url,
        description="Build cache database URL",
    )

    # Plans
    default_plan: str = Field(
        default=DEFAULT_PLAN_FILE,
        description="Plan file built when no file is given",
    )

    # Operational modes
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="WARNING",
        description="Logging level",
    )

    # Engine
    poll_interval: float = Field(
        default=0.25,
        gt=0,
        le=5,
        description="Seconds between cancellation checks during engine calls",
    )
    docker_timeout: int = Field(
        default=600,
        ge=10,
        description="Timeout for individual Docker API requests",
    )

    def cache_enabled(self, flag: bool | None = None) -> bool:
        """Resolve whether the build cache is enabled.

        Args:
            flag: Value of the --cache/--no-cache CLI flag, if given.

        Returns:
            The CLI flag when provided, otherwise False when NO_CACHE is set
            in the environment, otherwise the ``cache`` setting.
        """
        if flag is not None:
            return flag
        if os.environ.get("NO_CACHE"):
            return False
        return self.cache


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["DEFAULT_PLAN_FILE", "Settings", "get_settings", "print_settings_json"]
