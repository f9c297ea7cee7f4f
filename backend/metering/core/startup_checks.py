"""
Startup-time checks for required configuration.
"""

from __future__ import annotations

from metering.core.config import settings
from metering.usage.resources import verify_resource_tables


def _is_production() -> bool:
    env = (settings.ENVIRONMENT or "").strip().lower()
    return env in {"production", "prod"}


def run_startup_checks() -> None:
    missing: list[str] = []
    invalid: list[str] = []

    if not settings.DATABASE_URL:
        missing.append("DATABASE_URL")
    if len(settings.DEFAULT_CURRENCY or "") != 3:
        invalid.append("DEFAULT_CURRENCY")
    if settings.USAGE_HISTORY_DEFAULT_LIMIT <= 0:
        invalid.append("USAGE_HISTORY_DEFAULT_LIMIT")

    if _is_production() and settings.DB_ECHO:
        invalid.append("DB_ECHO")

    if missing or invalid:
        parts = []
        if missing:
            parts.append(f"Missing required settings: {', '.join(sorted(set(missing)))}")
        if invalid:
            parts.append(f"Invalid settings detected: {', '.join(sorted(set(invalid)))}")
        raise RuntimeError("Startup checks failed. " + " ".join(parts))

    verify_resource_tables()
