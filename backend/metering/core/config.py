# Central place for all configurable settings. We use Pydantic's
# BaseSettings so values can be read from env vars or a .env file.
# Billing constants that operators tune per deployment live here;
# fixed catalogue values (free tier, unit prices) live in code.

import json
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def safe_json_loads(value):
    try:
        return json.loads(value)
    except Exception:
        return value


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_json_loads=safe_json_loads,
    )

    # Core DB connection string, like sqlite:///./metering.db or a Postgres URL.
    DATABASE_URL: str

    # Toggle SQLAlchemy echo logs. Useful for debugging queries locally.
    DB_ECHO: bool = False

    # Deployment environment name ("development", "production", ...).
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Tenancy: the header the HTTP surface reads the workspace id from.
    TENANT_HEADER_NAME: str = "X-Tenant-ID"

    # Billing cycle length used for period math and proration.
    BILLING_CYCLE_DAYS: int = Field(default=30, gt=0)

    # Consecutive failed payments before a past-due subscription is cancelled.
    MAX_CONSECUTIVE_PAYMENT_FAILURES: int = Field(default=3, gt=0)

    # Percent-of-quota at which a threshold warning is emitted (up to 100).
    QUOTA_WARNING_THRESHOLD_PERCENT: float = Field(default=80.0, gt=0, lt=100)

    # Currency used when a caller does not name one.
    DEFAULT_CURRENCY: str = "AUD"

    # Number of snapshots returned by history queries when no limit is given.
    USAGE_HISTORY_DEFAULT_LIMIT: int = Field(default=12, gt=0)

    # Delete archived counter events once their snapshot has been written.
    ARCHIVE_PURGE_EVENTS: bool = False

    # Optional public base URL, only used in notification links.
    APP_BASE_URL: Optional[str] = None

    @field_validator("DEFAULT_CURRENCY", mode="before")
    @classmethod
    def _normalize_currency(cls, value):
        if isinstance(value, str):
            return value.strip().upper()
        return value


# Instantiate a single settings object for app-wide import.
# Any module can just `from metering.core.config import settings`.
settings = Settings()
