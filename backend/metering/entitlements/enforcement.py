"""
Quota decisions for metered operations.

``enforce_quota`` FAILS OPEN: if the entitlement or the usage totals cannot
be read (database outage, unexpected error), the operation is allowed and
the failure is logged and counted. Availability of the metered operation
takes priority over quota accuracy, so a broken metering plane never blocks
users.

Checks and recording are not atomic. Two concurrent requests can both pass
a check against the same pre-increment total and jointly overshoot the
quota. Quotas are soft business limits, so that overshoot is accepted.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from metering.billing.catalog import plan_key_from_plan_name, suggest_upgrade_plan
from metering.core.best_effort import run_best_effort
from metering.core.config import settings
from metering.core.metrics import (
    record_quota_decision,
    record_quota_fail_open,
    record_threshold_warning,
)
from metering.core.time import normalize_ts, utcnow
from metering.entitlements.catalog import resolve_entitlement
from metering.models.enums import ResourceType
from metering.notifications.dispatcher import notify_quota_threshold
from metering.usage.aggregator import aggregate, month_start, percent_of_limit
from metering.usage.resources import QUOTA_SUGGESTIONS, parse_resource_type


logger = logging.getLogger(__name__)


def _display_number(value: Decimal | int) -> str:
    return format(Decimal(value).normalize(), "f")


@dataclass
class QuotaCheck:
    tenant_id: int
    resource_type: ResourceType
    current: Decimal
    increment: Decimal
    limit: int | None
    exceeded: bool
    percent_used: float
    plan_name: str | None = None

    @property
    def projected(self) -> Decimal:
        return self.current + self.increment

    @property
    def unlimited(self) -> bool:
        return self.limit is None

    def to_payload(self) -> dict[str, Any]:
        return {
            "resource_type": self.resource_type.value,
            "current": self.current,
            "increment": self.increment,
            "projected": self.projected,
            "limit": self.limit,
            "exceeded": self.exceeded,
            "percent_used": self.percent_used,
        }


@dataclass
class QuotaDecision:
    allowed: bool
    resource_type: ResourceType
    reason: str | None = None
    suggestion: str | None = None
    check: QuotaCheck | None = None
    fail_open: bool = False
    upgrade_plan_key: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "allowed": self.allowed,
            "resource_type": self.resource_type.value,
        }
        if self.reason:
            payload["reason"] = self.reason
        if self.suggestion:
            payload["suggestion"] = self.suggestion
        if self.check is not None:
            payload["check"] = self.check.to_payload()
        if self.upgrade_plan_key:
            payload["upgrade_plan_key"] = self.upgrade_plan_key
        if self.fail_open:
            payload["fail_open"] = True
        return payload


def _coerce_increment(value) -> Decimal:
    try:
        parsed = Decimal(str(value))
    except ArithmeticError:
        raise ValueError(f"Invalid usage increment: {value}") from None
    if not parsed.is_finite() or parsed < 0:
        raise ValueError("Usage increment must be a non-negative number")
    return parsed


def _is_near_limit(check: QuotaCheck) -> bool:
    if check.unlimited:
        return False
    return settings.QUOTA_WARNING_THRESHOLD_PERCENT <= check.percent_used < 100


def _warn_if_near_limit(check: QuotaCheck) -> bool:
    if not _is_near_limit(check):
        return False
    record_threshold_warning(check.resource_type.value)
    logger.info(
        "quota.threshold_warning",
        extra={
            "tenant_id": check.tenant_id,
            "resource_type": check.resource_type.value,
            "percent_used": round(check.percent_used, 2),
        },
    )
    notify_quota_threshold(
        check.tenant_id,
        check.resource_type.value,
        check.percent_used,
        current=check.projected,
        limit=check.limit,
    )
    return True


def check_quota(
    db: Session,
    tenant_id: int,
    resource_type: ResourceType | str,
    increment: Decimal | int | float = 0,
    *,
    now: datetime | None = None,
) -> QuotaCheck:
    """Compare projected usage against the tenant's quota.

    Counters are measured over the current calendar month. Emits a
    threshold-warning signal whenever the projected share sits between the
    warning threshold and 100 %; deduplicating those is up to listeners.
    """
    resource = parse_resource_type(resource_type)
    amount = _coerce_increment(increment)
    current_ts = normalize_ts(now) or utcnow()

    entitlement = resolve_entitlement(db, tenant_id, now=current_ts)
    totals = aggregate(db, tenant_id, month_start(current_ts), current_ts)
    current = totals[resource]
    limit = entitlement.limit_for(resource)
    projected = current + amount

    check = QuotaCheck(
        tenant_id=tenant_id,
        resource_type=resource,
        current=current,
        increment=amount,
        limit=limit,
        exceeded=limit is not None and projected > limit,
        percent_used=percent_of_limit(projected, limit),
        plan_name=entitlement.plan_name,
    )
    _warn_if_near_limit(check)
    return check


def enforce_quota(
    db: Session,
    tenant_id: int,
    resource_type: ResourceType | str,
    increment: Decimal | int | float,
    *,
    now: datetime | None = None,
) -> QuotaDecision:
    resource = parse_resource_type(resource_type)
    amount = _coerce_increment(increment)

    outcome = run_best_effort(
        "quota.check",
        check_quota,
        db,
        tenant_id,
        resource,
        amount,
        now=now,
        savepoint=db,
        log_extra={"tenant_id": tenant_id, "resource_type": resource.value},
    )
    if not outcome.ok:
        record_quota_fail_open(resource.value)
        record_quota_decision(resource.value, "fail_open")
        logger.warning(
            "quota.fail_open",
            extra={"tenant_id": tenant_id, "resource_type": resource.value},
        )
        return QuotaDecision(allowed=True, resource_type=resource, fail_open=True)

    check = outcome.value
    if not check.exceeded:
        record_quota_decision(resource.value, "allowed")
        return QuotaDecision(allowed=True, resource_type=resource, check=check)

    record_quota_decision(resource.value, "denied")
    logger.info(
        "quota.denied",
        extra={
            "tenant_id": tenant_id,
            "resource_type": resource.value,
            "projected": str(check.projected),
            "limit": check.limit,
        },
    )
    return QuotaDecision(
        allowed=False,
        resource_type=resource,
        reason=(
            f"{resource.value} quota exceeded. "
            f"Used {_display_number(check.projected)} of {_display_number(check.limit)}."
        ),
        suggestion=QUOTA_SUGGESTIONS[resource],
        check=check,
        upgrade_plan_key=suggest_upgrade_plan(plan_key_from_plan_name(check.plan_name) or "free"),
    )


def check_quota_warnings(
    db: Session,
    tenant_id: int,
    *,
    now: datetime | None = None,
) -> list[QuotaCheck]:
    """Evaluate every resource at its current level; returns those near the limit."""
    near_limit = []
    for resource in ResourceType:
        check = check_quota(db, tenant_id, resource, 0, now=now)
        if _is_near_limit(check):
            near_limit.append(check)
    return near_limit


def clamp_percent(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return max(0.0, min(100.0, value))


def usage_status_color(percent_used: float) -> str:
    if percent_used >= 90:
        return "red"
    if percent_used >= 75:
        return "orange"
    if percent_used >= 50:
        return "yellow"
    return "green"
