"""
toolmount.settings - Centralized Configuration

Single source of truth for toolmount configuration.
Loads from .env files and environment variables using pydantic-settings.

Settings hierarchy (highest wins):
    PermissionSettings  (persisted runtime_settings row -- mode changes)
        |
    ToolmountSettings   (.env / env vars -- server defaults)

Usage:
    >>> from toolmount.settings import get_settings
    >>> settings = get_settings()
    >>> settings.database_url
    'postgresql+asyncpg://localhost/toolmount_dev'

    >>> settings.clamp_timeout_ms(500)
    1000
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ToolmountSettings(BaseSettings):
    """Centralized toolmount configuration loaded from .env / environment variables.

    All TOOLMOUNT_* prefixed env vars are loaded automatically.
    DATABASE_URL uses the standard name (no prefix) via alias.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="TOOLMOUNT_",
        extra="ignore",
        populate_by_name=True,
    )

    # -- Environment -----------------------------------------------------------
    env: str = "development"

    # -- Database --------------------------------------------------------------
    database_url: str = Field(
        default="postgresql+asyncpg://localhost/toolmount_dev",
        alias="DATABASE_URL",
    )
    database_echo: bool = False

    # -- API Server ------------------------------------------------------------
    # Defaults to loopback; set TOOLMOUNT_API_HOST=0.0.0.0 for container use.
    api_host: str = "127.0.0.1"
    api_port: int = 8000
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"
    log_handler_source: bool = False

    # -- Execution -------------------------------------------------------------
    default_timeout_ms: int = 30_000
    min_timeout_ms: int = Field(default=1_000, ge=1)
    max_timeout_ms: int = 300_000
    worker_startup_timeout_ms: int = Field(default=10_000, ge=1)
    max_output_bytes: int = Field(default=1_048_576, ge=1)

    # -- Registry / permissions --------------------------------------------------
    seed_builtins: bool = True
    default_permission_mode: Literal["ask", "autonomous"] = "ask"

    # -- Validators ------------------------------------------------------------

    @model_validator(mode="after")
    def _check_timeout_bounds(self) -> ToolmountSettings:
        """Reject inverted bounds and a default outside of them."""
        if self.min_timeout_ms > self.max_timeout_ms:
            raise ValueError("min_timeout_ms cannot exceed max_timeout_ms")
        if not self.min_timeout_ms <= self.default_timeout_ms <= self.max_timeout_ms:
            raise ValueError("default_timeout_ms must lie within [min_timeout_ms, max_timeout_ms]")
        return self

    # -- Helpers ---------------------------------------------------------------

    def clamp_timeout_ms(self, timeout_ms: int | None) -> int:
        """Clamp a requested timeout into the enforced range (None -> default)."""
        if timeout_ms is None:
            return self.default_timeout_ms
        return max(self.min_timeout_ms, min(self.max_timeout_ms, int(timeout_ms)))

    def configure_logging(self) -> None:
        """Configure root logging for entry points (API server, CLI)."""
        logging.basicConfig(
            level=getattr(logging, self.log_level.upper(), logging.INFO),
            format="%(asctime)s %(name)s %(levelname)s %(message)s",
        )


# ---------------------------------------------------------------------------
# Singleton accessor
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def get_settings() -> ToolmountSettings:
    """Return the cached ToolmountSettings singleton."""
    return ToolmountSettings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for tests)."""
    get_settings.cache_clear()
