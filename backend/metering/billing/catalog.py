from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from metering.crud.plans import create_plan, get_plan_by_name
from metering.models.plans import Plan
from metering.usage.resources import FREE_TIER_LIMITS, GIB, QUOTA_KEYS


logger = logging.getLogger(__name__)

_PLAN_NAME_MAP = {
    "free": "Free",
    "starter": "Starter",
    "pro": "Pro",
    "business": "Business",
}

PLAN_TIERS = {
    "free": {
        "plan_name": "Free",
        "prices": {"AUD": "0.00", "USD": "0.00"},
        "trial_days": 0,
        "limits": {QUOTA_KEYS[resource]: limit for resource, limit in FREE_TIER_LIMITS.items()},
    },
    "starter": {
        "plan_name": "Starter",
        "prices": {"AUD": "15.00", "USD": "10.00"},
        "trial_days": 0,
        "limits": {
            "storage_bytes": 10 * GIB,
            "processing_minutes": 300,
            "api_calls": 5000,
            "transcription_minutes": 120,
            "ai_tokens": 200000,
        },
    },
    "pro": {
        "plan_name": "Pro",
        "prices": {"AUD": "45.00", "USD": "29.00"},
        "trial_days": 14,
        "limits": {
            "storage_bytes": 50 * GIB,
            "processing_minutes": 600,
            "api_calls": 10000,
            "transcription_minutes": 300,
            "ai_tokens": 500000,
        },
    },
    "business": {
        "plan_name": "Business",
        "prices": {"AUD": "149.00", "USD": "99.00"},
        "trial_days": 30,
        "limits": {
            "storage_bytes": 500 * GIB,
            "processing_minutes": 6000,
            "api_calls": None,
            "transcription_minutes": 3000,
            "ai_tokens": 5000000,
        },
    },
}


def normalize_plan_key(value: str | None) -> Optional[str]:
    if not value:
        return None
    return value.strip().lower()


def get_plan_name(plan_key: str) -> Optional[str]:
    normalized = normalize_plan_key(plan_key)
    if not normalized:
        return None
    return _PLAN_NAME_MAP.get(normalized)


def plan_key_from_plan_name(plan_name: str | None) -> Optional[str]:
    if not plan_name:
        return None
    normalized = plan_name.strip().lower()
    for key, name in _PLAN_NAME_MAP.items():
        if name.lower() == normalized:
            return key
    return normalized


def suggest_upgrade_plan(plan_key: str | None) -> Optional[str]:
    if not plan_key:
        return None
    ladder = {
        "free": "starter",
        "starter": "pro",
        "pro": "business",
    }
    return ladder.get(plan_key)


def seed_plans(db: Session) -> list[Plan]:
    """Create the built-in tiers that do not exist yet; existing plans are kept."""
    plans = []
    for key, tier in PLAN_TIERS.items():
        existing = get_plan_by_name(db, tier["plan_name"])
        if existing is not None:
            plans.append(existing)
            continue
        plan = create_plan(
            db,
            name=tier["plan_name"],
            tier=key,
            limits=dict(tier["limits"]),
            prices=dict(tier["prices"]),
            trial_days=int(tier["trial_days"]),
        )
        logger.info("billing.plan_seeded", extra={"plan_id": plan.id, "plan_name": plan.name})
        plans.append(plan)
    return plans
