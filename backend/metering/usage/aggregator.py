from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from metering.core.time import normalize_ts, utcnow
from metering.crud.audio_uploads import sum_completed_bytes
from metering.crud.usage_events import sum_by_resource
from metering.entitlements.catalog import resolve_entitlement
from metering.models.enums import ResourceType
from metering.usage.resources import COUNTER_RESOURCES


ZERO = Decimal("0")


def month_start(now: datetime | None = None) -> datetime:
    current = normalize_ts(now) or utcnow()
    return datetime(current.year, current.month, 1)


def month_bounds(now: datetime | None = None) -> tuple[datetime, datetime]:
    """Calendar month containing ``now`` as ``[start, next month start)``."""
    start = month_start(now)
    if start.month == 12:
        end = datetime(start.year + 1, 1, 1)
    else:
        end = datetime(start.year, start.month + 1, 1)
    return start, end


def percent_of_limit(consumed: Decimal, limit: int | None) -> float:
    """Share of ``limit`` consumed, unclamped.

    Values above 100 are meaningful and drive enforcement. An unlimited
    quota is never consumed; a zero quota is exhausted by any usage.
    """
    if limit is None:
        return 0.0
    if limit == 0:
        return 0.0 if consumed <= 0 else math.inf
    return float(Decimal(consumed) / Decimal(limit) * 100)


def aggregate(
    db: Session,
    tenant_id: int,
    window_start: datetime | None,
    window_end: datetime | None,
) -> dict[ResourceType, Decimal]:
    """Consumed quantity per resource type for ``tenant_id``.

    Storage is a gauge: the bytes held by completed uploads right now,
    regardless of the window. Every other resource is a counter summed over
    usage events whose timestamp falls inside ``[window_start, window_end]``.
    Resources without activity report zero.
    """
    totals: dict[ResourceType, Decimal] = {resource: ZERO for resource in ResourceType}

    counters = sum_by_resource(
        db,
        tenant_id,
        start=normalize_ts(window_start),
        end=normalize_ts(window_end),
        resource_types=[resource.value for resource in COUNTER_RESOURCES],
    )
    for key, total in counters.items():
        totals[ResourceType(key)] = total

    totals[ResourceType.STORAGE] = Decimal(sum_completed_bytes(db, tenant_id))
    return totals


@dataclass
class UsageSummary:
    tenant_id: int
    window_start: datetime
    window_end: datetime
    totals: dict[ResourceType, Decimal] = field(default_factory=dict)
    limits: dict[ResourceType, int | None] = field(default_factory=dict)
    percent_used: dict[ResourceType, float] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "resources": {
                resource.value: {
                    "used": self.totals.get(resource, ZERO),
                    "limit": self.limits.get(resource),
                    "percent_used": self.percent_used.get(resource, 0.0),
                }
                for resource in ResourceType
            },
        }


def get_usage(
    db: Session,
    tenant_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
    *,
    now: datetime | None = None,
) -> UsageSummary:
    """Usage against entitlement; defaults to the current calendar month."""
    current = normalize_ts(now) or utcnow()
    window_start = normalize_ts(start) or month_start(current)
    window_end = normalize_ts(end) or current
    if window_end < window_start:
        raise ValueError("end must not be before start")

    entitlement = resolve_entitlement(db, tenant_id, now=current)
    totals = aggregate(db, tenant_id, window_start, window_end)
    limits = {resource: entitlement.limit_for(resource) for resource in ResourceType}
    return UsageSummary(
        tenant_id=tenant_id,
        window_start=window_start,
        window_end=window_end,
        totals=totals,
        limits=limits,
        percent_used={
            resource: percent_of_limit(totals[resource], limits[resource])
            for resource in ResourceType
        },
    )


def usage_statistics(
    db: Session,
    tenant_id: int,
    days: int = 30,
    *,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Ledger totals per resource type over the trailing ``days`` days."""
    if days <= 0:
        raise ValueError("days must be positive")
    current = normalize_ts(now) or utcnow()
    totals = sum_by_resource(db, tenant_id, start=current - timedelta(days=days), end=current)
    return [
        {"resource_type": resource.value, "total_amount": totals.get(resource.value, ZERO)}
        for resource in ResourceType
    ]
