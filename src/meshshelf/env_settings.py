"""Environment-based settings using pydantic-settings.

This module provides type-safe environment variable loading with validation.

Usage:
    from meshshelf.env_settings import get_env_settings

    env = get_env_settings()
    print(env.importer.yield_every)  # From MESHSHELF_IMPORT_YIELD_EVERY

Environment Variables:
    Import pipeline:
        MESHSHELF_IMPORT_YIELD_EVERY - Items processed between event-loop yields (default: 5)
        MESHSHELF_IMPORT_FLUSH_INTERVAL_MS - Progress aggregation window (default: 50)
        MESHSHELF_IMPORT_EXTENSIONS - JSON list of file extensions (default: [".stl"])

    Catalog:
        MESHSHELF_CATALOG_DB_PATH - SQLite catalog location (default: data dir)

    Application:
        MESHSHELF_ENV - Environment name (default: "production")
        LOG_LEVEL - Logging level (default: "INFO")
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class ImportEnvSettings(BaseSettings):
    """Import pipeline tuning from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MESHSHELF_IMPORT_",
        extra="ignore",
    )

    yield_every: int = Field(
        default=5,
        ge=1,
        description="Yield to the event loop every N items",
    )
    flush_interval_ms: int = Field(
        default=50,
        ge=0,
        description="Progress aggregation window in milliseconds",
    )
    extensions: list[str] = Field(
        default_factory=lambda: [".stl"],
        description="File extensions picked up by the scanner",
    )

    @field_validator("extensions")
    @classmethod
    def normalize_extensions(cls, v: list[str]) -> list[str]:
        """Lower-case extensions and make sure they start with a dot."""
        normalized: list[str] = []
        for ext in v:
            ext = ext.strip().lower()
            if not ext:
                continue
            if not ext.startswith("."):
                ext = f".{ext}"
            if ext not in normalized:
                normalized.append(ext)
        if not normalized:
            raise ValueError("At least one file extension is required")
        return normalized

    @property
    def flush_interval(self) -> float:
        """Aggregation window in seconds."""
        return self.flush_interval_ms / 1000


class CatalogEnvSettings(BaseSettings):
    """Catalog database settings from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MESHSHELF_CATALOG_",
        extra="ignore",
    )

    db_path: Path | None = Field(default=None, description="SQLite catalog file")


class AppEnvSettings(BaseSettings):
    """Application-level settings from environment variables.

    Reads from MESHSHELF_ENV, LOG_LEVEL env vars.
    """

    model_config = SettingsConfigDict(
        extra="ignore",
    )

    env: str = Field(
        default="production",
        validation_alias="MESHSHELF_ENV",
        description="Environment name (development/production)",
    )
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Logging level",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}, got: {v}")
        return upper


class EnvSettings(BaseSettings):
    """Combined environment settings.

    Use get_env_settings() to get a cached instance.
    """

    model_config = SettingsConfigDict(
        extra="ignore",
    )

    importer: ImportEnvSettings = Field(default_factory=ImportEnvSettings)
    catalog: CatalogEnvSettings = Field(default_factory=CatalogEnvSettings)
    app: AppEnvSettings = Field(default_factory=AppEnvSettings)


@lru_cache(maxsize=1)
def get_env_settings() -> EnvSettings:
    """Get cached environment settings.

    Returns:
        EnvSettings instance with all environment-based configuration.
    """
    return EnvSettings()


def clear_env_settings_cache() -> None:
    """Clear the cached environment settings.

    Useful for testing to ensure fresh settings are loaded.
    """
    get_env_settings.cache_clear()


def load_env_settings_from_file(env_file: Path) -> EnvSettings:
    """Load environment settings from a specific .env file.

    Args:
        env_file: Path to .env file to load.

    Returns:
        EnvSettings instance with configuration from the file.
    """
    from dotenv import load_dotenv

    load_dotenv(env_file, override=True)

    clear_env_settings_cache()
    return get_env_settings()
