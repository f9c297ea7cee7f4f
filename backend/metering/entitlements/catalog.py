from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from metering.billing.lifecycle import refresh_trial_status
from metering.crud.subscriptions import get_entitled_subscription_for_tenant
from metering.models.enums import ResourceType
from metering.models.plans import Plan
from metering.usage.resources import FREE_TIER_LIMITS, QUOTA_KEYS


logger = logging.getLogger(__name__)

# An unlimited quota is an explicit None, never a large sentinel number.
UNLIMITED = None

SOURCE_PLAN = "plan"
SOURCE_DEFAULT = "default"


@dataclass(frozen=True)
class Entitlement:
    tenant_id: int
    source: str
    limits: dict[ResourceType, int | None] = field(default_factory=dict)
    plan_id: int | None = None
    plan_name: str | None = None
    subscription_id: int | None = None

    def limit_for(self, resource_type: ResourceType) -> int | None:
        return self.limits.get(resource_type, FREE_TIER_LIMITS[resource_type])

    def is_unlimited(self, resource_type: ResourceType) -> bool:
        return self.limit_for(resource_type) is UNLIMITED

    def to_payload(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "source": self.source,
            "plan_id": self.plan_id,
            "plan_name": self.plan_name,
            "subscription_id": self.subscription_id,
            "limits": {resource.value: limit for resource, limit in self.limits.items()},
        }


def default_entitlement(tenant_id: int) -> Entitlement:
    return Entitlement(tenant_id=tenant_id, source=SOURCE_DEFAULT, limits=dict(FREE_TIER_LIMITS))


def _coerce_limit(raw: Any, resource_type: ResourceType, plan_id: int | None) -> int | None:
    if raw is None:
        return UNLIMITED
    if isinstance(raw, bool):
        raw = None
    try:
        parsed = int(raw)
    except (TypeError, ValueError):
        parsed = -1
    if parsed < 0:
        logger.warning(
            "entitlement.invalid_limit",
            extra={"plan_id": plan_id, "resource_type": resource_type.value, "value": str(raw)},
        )
        return FREE_TIER_LIMITS[resource_type]
    return parsed


def limits_from_plan(plan: Plan | None) -> dict[ResourceType, int | None]:
    limits: dict[ResourceType, int | None] = dict(FREE_TIER_LIMITS)
    if plan is None:
        return limits
    declared = plan.limits_json or {}
    for resource_type, key in QUOTA_KEYS.items():
        if key in declared:
            limits[resource_type] = _coerce_limit(declared[key], resource_type, plan.id)
    return limits


def resolve_entitlement(
    db: Session,
    tenant_id: int,
    *,
    now: datetime | None = None,
) -> Entitlement:
    """Quota per resource for ``tenant_id``.

    Uses the plan of the tenant's most recent active (or trialing)
    subscription. Workspaces without one get the free tier; that is the
    normal default case, not an error.
    """
    subscription = get_entitled_subscription_for_tenant(db, tenant_id)
    if subscription is not None:
        refresh_trial_status(db, subscription, now=now)
    if subscription is None or subscription.plan is None:
        return default_entitlement(tenant_id)
    plan = subscription.plan
    return Entitlement(
        tenant_id=tenant_id,
        source=SOURCE_PLAN,
        limits=limits_from_plan(plan),
        plan_id=plan.id,
        plan_name=plan.name,
        subscription_id=subscription.id,
    )
