"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup, so a malformed value fails fast with a clear error message.

Usage:
    from marketplace_escrow.config import get_settings
    settings = get_settings()
    print(settings.confirmation_window)
"""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the marketplace escrow service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database ---
    database_url: str = (
        "postgresql+asyncpg://marketplace:marketplace_dev"
        "@localhost:5432/marketplace_escrow"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Escrow ---
    confirmation_window_hours: int = Field(default=48, ge=1)

    # --- Expiry sweep ---
    # 0 disables the in-process scheduler; an external cron can still call
    # the admin endpoint or the marketplace-escrow-sweep command.
    sweep_interval_seconds: int = Field(default=0, ge=0)
    sweep_max_concurrency: int = Field(default=4, ge=1)
    sweep_record_timeout_seconds: float = Field(default=10.0, gt=0)
    # Expired records read and released per page.
    sweep_batch_size: int = Field(default=500, ge=1)
    # Principals allowed to trigger a sweep over HTTP (comma-separated ids).
    sweep_operator_ids: str = ""

    # --- Payment gateway ---
    # Shared secret the gateway sends in X-Gateway-Secret. Empty rejects
    # every notification.
    gateway_webhook_secret: str = ""

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def confirmation_window(self) -> timedelta:
        return timedelta(hours=self.confirmation_window_hours)

    @property
    def sweep_operator_id_set(self) -> frozenset[str]:
        """Parse comma-separated operator ids into a set."""
        if not self.sweep_operator_ids:
            return frozenset()
        return frozenset(p.strip() for p in self.sweep_operator_ids.split(",") if p.strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
