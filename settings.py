# settings.py
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Literal


DEV_CRON_API_KEY = "dev-cron-key-change-me"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    ENV: Literal["dev", "test", "staging", "prod"] = "dev"
    LOG_LEVEL: str = "INFO"

    # -----------------------
    # DB
    # -----------------------
    DATABASE_URL: str = Field(default="")
    DB_STATEMENT_TIMEOUT_MS: int = Field(default=5000)
    DB_POOL_MIN: int = Field(default=1, ge=1)
    DB_POOL_MAX: int = Field(default=10, ge=1)

    # -----------------------
    # Payment processor (Mode Switch)
    # -----------------------
    PROCESSOR_MODE: Literal["mock", "stripe"] = "mock"
    STRIPE_SECRET_KEY: str = ""
    STRIPE_API_BASE: str = "https://api.stripe.com"
    STRIPE_API_VERSION: str = "2024-06-20"

    # Every processor call is bounded; a timeout counts as a transient failure
    PROCESSOR_HTTP_TIMEOUT_S: float = 20.0

    # -----------------------
    # Release policy
    # -----------------------
    COMPLAINT_WINDOW_HOURS: int = Field(default=24, ge=24)
    # "US:2,BR:30" -> per-country minimum delay overrides
    PAYOUT_DELAY_OVERRIDES: str = ""
    # 0 = transient failures retry forever (next run); >0 = move to FAILED after N attempts
    RELEASE_MAX_ATTEMPTS: int = Field(default=0, ge=0)

    # -----------------------
    # Trigger + alerting
    # -----------------------
    CRON_API_KEY: str = DEV_CRON_API_KEY
    ALERT_WEBHOOK_URL: str = ""
    ALERT_HTTP_TIMEOUT_S: float = 5.0


settings = Settings()


def validate_env_settings() -> None:
    env = (settings.ENV or "dev").strip().lower()
    if env not in ("staging", "prod"):
        return

    missing: list[str] = []
    if not (settings.DATABASE_URL or "").strip():
        missing.append("DATABASE_URL")
    if not (settings.CRON_API_KEY or "").strip() or settings.CRON_API_KEY == DEV_CRON_API_KEY:
        missing.append("CRON_API_KEY")
    if settings.PROCESSOR_MODE == "stripe" and not (settings.STRIPE_SECRET_KEY or "").strip():
        missing.append("STRIPE_SECRET_KEY")
    if env == "prod" and settings.PROCESSOR_MODE != "stripe":
        missing.append("PROCESSOR_MODE=stripe")

    if missing:
        raise RuntimeError(f"Missing/invalid settings for ENV={env}: {', '.join(missing)}")
