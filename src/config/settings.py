# src/config/settings.py — v2
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for cache, download and logging settings.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Cache ===
    cache_backend: Literal["sqlite", "file", "redis", "memory"] = "sqlite"
    cache_root: Path = Path("~/.gradecache/cache")
    cache_redis_url: str = ""
    cache_max_age_days: int = 7
    cache_wait_timeout_s: float = 60.0

    # === Downloads ===
    offline_mode: bool = False  # reads never fall back to the source
    download_concurrency_limit: int = 3  # 0 = no limit (ceiling applies)
    download_concurrency_ceiling: int = 20
    download_max_retries: int = 3
    download_retry_base_delay_s: float = 1.0
    download_retry_backoff_factor: float = 2.0
    download_retry_max_delay_s: float = 10.0
    download_timeout_s: float = 60.0

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator(
        "cache_max_age_days",
        "download_concurrency_limit",
        "download_max_retries",
        "log_retention",
    )
    @classmethod
    def validate_non_negative(cls, v: int) -> int:  # noqa: N805
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @field_validator(
        "cache_wait_timeout_s",
        "download_retry_base_delay_s",
        "download_timeout_s",
    )
    @classmethod
    def validate_positive_seconds(cls, v: float) -> float:  # noqa: N805
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.cache_backend == "redis" and not self.cache_redis_url:
            errors.append("CACHE_BACKEND=redis requires CACHE_REDIS_URL")

        if self.download_concurrency_ceiling < 1:
            errors.append("DOWNLOAD_CONCURRENCY_CEILING must be >= 1")
        elif self.download_concurrency_limit > self.download_concurrency_ceiling:
            errors.append(
                "DOWNLOAD_CONCURRENCY_LIMIT must not exceed DOWNLOAD_CONCURRENCY_CEILING"
            )

        if self.download_retry_max_delay_s < self.download_retry_base_delay_s:
            errors.append(
                "DOWNLOAD_RETRY_MAX_DELAY_S must be >= DOWNLOAD_RETRY_BASE_DELAY_S"
            )

        if self.download_retry_backoff_factor < 1.0:
            errors.append("DOWNLOAD_RETRY_BACKOFF_FACTOR must be >= 1.0")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
