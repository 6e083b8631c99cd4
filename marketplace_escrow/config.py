"""Application configuration settings."""
from __future__ import annotations

import os
from functools import lru_cache

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "test" | "staging" | "prod"
ENV = os.getenv("APP_ENV", "dev").lower()


class Settings(BaseSettings):
    """Environment configuration for the marketplace escrow backend."""

    app_env: str = ENV
    database_url: str = "sqlite:///marketplace_escrow.db"
    LOG_LEVEL: str = "INFO"
    ALLOW_DB_CREATE_ALL: bool = False
    CORS_ALLOW_ORIGINS: list[str] = ["http://localhost:3000"]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = False

    # --- Scheduled jobs --------------------------------------------------
    SCHEDULER_ENABLED: bool = False
    ESCROW_RELEASE_INTERVAL_MINUTES: int = 60
    STALE_PURCHASE_SWEEP_INTERVAL_MINUTES: int = 24 * 60
    STALE_PURCHASE_MAX_AGE_HOURS: int = 24
    CRON_SECRET: str | None = None

    # --- Limits ----------------------------------------------------------
    SPEND_LIMIT_TIMEZONE: str = "UTC"

    # --- Stripe payouts --------------------------------------------------
    STRIPE_ENABLED: bool = False
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_TIMEOUT_SECONDS: int = 10
    STRIPE_MAX_NETWORK_RETRIES: int = 2
    PAYOUT_CURRENCY: str = "usd"

    # --- Notifications ---------------------------------------------------
    OPERATOR_ALERT_RECIPIENT: str = "operators"

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8"
    )

    @field_validator("CRON_SECRET", "STRIPE_SECRET_KEY")
    @classmethod
    def _strip_empty_secret(cls, value: str | None) -> str | None:
        """Normalise empty secrets to ``None`` for easier validation."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None


class AppInfo(BaseModel):
    name: str = "marketplace-escrow"
    version: str = "0.1.0"


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()


__all__ = ["ENV", "Settings", "AppInfo", "get_settings"]
