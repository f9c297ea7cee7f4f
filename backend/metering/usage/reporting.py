from __future__ import annotations

import csv
import io
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from metering.core.best_effort import run_best_effort
from metering.core.config import settings
from metering.core.metrics import record_archive_run
from metering.core.time import normalize_ts, utcnow
from metering.crud.tenants import list_active_tenant_ids
from metering.crud.usage_events import delete_events_in_window
from metering.crud.usage_snapshots import get_snapshot, list_snapshots
from metering.entitlements.catalog import resolve_entitlement
from metering.models.enums import ReportPeriodEnum, ResourceType
from metering.models.usage_snapshots import UsageSnapshot
from metering.usage.aggregator import aggregate, month_bounds, month_start, percent_of_limit
from metering.usage.resources import (
    COUNTER_RESOURCES,
    GAUGE_RESOURCES,
    GIB,
    SNAPSHOT_COLUMNS,
    UNIT_PRICES,
)


logger = logging.getLogger(__name__)

COST_PLACES = Decimal("0.000001")

CSV_HEADERS = [
    "period_start",
    "period_end",
    "storage_bytes",
    "processing_minutes",
    "api_calls",
    "transcription_minutes",
    "ai_tokens",
    "total_cost",
]


def parse_period(value) -> ReportPeriodEnum:
    if isinstance(value, ReportPeriodEnum):
        return value
    try:
        return ReportPeriodEnum(str(value).strip().lower())
    except ValueError:
        raise ValueError(f"Unsupported report period: {value}") from None


def report_window(period: ReportPeriodEnum | str, now: datetime | None = None) -> tuple[datetime, datetime]:
    current = normalize_ts(now) or utcnow()
    resolved = parse_period(period)
    if resolved == ReportPeriodEnum.DAILY:
        start = datetime(current.year, current.month, current.day)
    elif resolved == ReportPeriodEnum.WEEKLY:
        start = current - timedelta(days=7)
    else:
        start = month_start(current)
    return start, current


def calculate_usage_costs(usage: dict[ResourceType, Decimal]) -> dict[str, Decimal]:
    """Cost per resource plus ``total``; storage is priced per GiB held."""
    costs: dict[str, Decimal] = {}
    for resource in ResourceType:
        quantity = Decimal(usage.get(resource, 0))
        if resource in GAUGE_RESOURCES:
            quantity = quantity / GIB
        costs[resource.value] = (quantity * UNIT_PRICES[resource]).quantize(COST_PLACES)
    costs["total"] = sum(costs.values(), Decimal("0"))
    return costs


@dataclass
class UsageReport:
    tenant_id: int
    period: ReportPeriodEnum
    start: datetime
    end: datetime
    usage: dict[ResourceType, Decimal] = field(default_factory=dict)
    limits: dict[ResourceType, int | None] = field(default_factory=dict)
    percent_used: dict[ResourceType, float] = field(default_factory=dict)
    costs: dict[str, Decimal] = field(default_factory=dict)

    @property
    def total_cost(self) -> Decimal:
        return self.costs.get("total", Decimal("0"))

    def to_payload(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "period": self.period.value,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "usage": {resource.value: value for resource, value in self.usage.items()},
            "limits": {resource.value: value for resource, value in self.limits.items()},
            "percent_used": {resource.value: value for resource, value in self.percent_used.items()},
            "costs": dict(self.costs),
        }


def _build_report(
    db: Session,
    tenant_id: int,
    period: ReportPeriodEnum,
    start: datetime,
    end: datetime,
) -> UsageReport:
    entitlement = resolve_entitlement(db, tenant_id, now=end)
    usage = aggregate(db, tenant_id, start, end)
    limits = {resource: entitlement.limit_for(resource) for resource in ResourceType}
    return UsageReport(
        tenant_id=tenant_id,
        period=period,
        start=start,
        end=end,
        usage=usage,
        limits=limits,
        percent_used={
            resource: percent_of_limit(usage[resource], limits[resource]) for resource in ResourceType
        },
        costs=calculate_usage_costs(usage),
    )


def generate_report(
    db: Session,
    tenant_id: int,
    period: ReportPeriodEnum | str = ReportPeriodEnum.MONTHLY,
    *,
    now: datetime | None = None,
) -> UsageReport:
    resolved = parse_period(period)
    start, end = report_window(resolved, now)
    return _build_report(db, tenant_id, resolved, start, end)


def archive_window(now: datetime | None = None, *, previous_month: bool = False) -> tuple[datetime, datetime]:
    """Month-to-date window, or the whole of the previous calendar month."""
    current = normalize_ts(now) or utcnow()
    if not previous_month:
        return month_start(current), current
    this_month = month_start(current)
    start, _ = month_bounds(this_month - timedelta(days=1))
    return start, this_month - timedelta(microseconds=1)


def _json_safe(values: dict) -> dict[str, Any]:
    safe = {}
    for key, value in values.items():
        name = key.value if isinstance(key, ResourceType) else key
        if isinstance(value, Decimal):
            value = str(value)
        elif isinstance(value, float) and math.isinf(value):
            value = "inf"
        safe[name] = value
    return safe


def archive_tenant_usage(
    db: Session,
    tenant_id: int,
    *,
    start: datetime,
    end: datetime,
    purge_events: bool = False,
) -> str:
    """Persist the monthly snapshot for one tenant; "archived" or "skipped".

    A snapshot that already exists for ``(tenant, monthly, start)`` is left
    alone. The unique constraint catches a concurrent archiver that slips
    past the existence check. With ``purge_events`` the counter events of
    the archived window are deleted in the same transaction.
    """
    period = ReportPeriodEnum.MONTHLY.value
    if get_snapshot(db, tenant_id, period, start) is not None:
        logger.info("usage.archive_skipped", extra={"tenant_id": tenant_id, "period_start": start.isoformat()})
        return "skipped"

    report = _build_report(db, tenant_id, ReportPeriodEnum.MONTHLY, start, end)
    snapshot = UsageSnapshot(
        tenant_id=tenant_id,
        period=period,
        period_start=start,
        period_end=end,
        total_cost=report.total_cost,
        metadata_json={
            "costs": _json_safe(report.costs),
            "percent_used": _json_safe(report.percent_used),
            "limits": _json_safe(report.limits),
        },
    )
    for resource, column in SNAPSHOT_COLUMNS.items():
        setattr(snapshot, column, report.usage[resource])
    db.add(snapshot)

    purged = 0
    try:
        db.flush()
        if purge_events:
            purged = delete_events_in_window(
                db,
                tenant_id,
                start=start,
                end=end,
                resource_types=[resource.value for resource in COUNTER_RESOURCES],
            )
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("usage.archive_skipped", extra={"tenant_id": tenant_id, "period_start": start.isoformat()})
        return "skipped"

    logger.info(
        "usage.archived",
        extra={
            "tenant_id": tenant_id,
            "period_start": start.isoformat(),
            "total_cost": str(report.total_cost),
            "events_purged": purged,
        },
    )
    return "archived"


def archive_all(
    db: Session,
    *,
    now: datetime | None = None,
    previous_month: bool = False,
    purge_events: bool | None = None,
    tenant_ids: Iterable[int] | None = None,
) -> dict[str, int]:
    """Archive monthly usage for every active tenant.

    Tenants are processed one at a time; a failure is logged and counted and
    the batch moves on to the next tenant.
    """
    start, end = archive_window(now, previous_month=previous_month)
    purge = settings.ARCHIVE_PURGE_EVENTS if purge_events is None else purge_events
    targets = list(tenant_ids) if tenant_ids is not None else list_active_tenant_ids(db)

    summary = {"archived": 0, "skipped": 0, "failed": 0}
    for tenant_id in targets:
        outcome = run_best_effort(
            "usage.archive_tenant",
            archive_tenant_usage,
            db,
            tenant_id,
            start=start,
            end=end,
            purge_events=purge,
            db=db,
            log_extra={"tenant_id": tenant_id},
        )
        result = outcome.value if outcome.ok else "failed"
        summary[result] += 1
        record_archive_run(result)

    logger.info(
        "usage.archive_completed",
        extra={"period_start": start.isoformat(), "tenants": len(targets), **summary},
    )
    return summary


def get_historical_reports(
    db: Session,
    tenant_id: int,
    period: ReportPeriodEnum | str = ReportPeriodEnum.MONTHLY,
    limit: int | None = None,
) -> list[UsageSnapshot]:
    """Most recent snapshots first."""
    resolved = parse_period(period)
    size = settings.USAGE_HISTORY_DEFAULT_LIMIT if limit is None else limit
    if size <= 0:
        raise ValueError("limit must be positive")
    return list_snapshots(db, tenant_id, resolved.value, size)


def growth_percentage(latest: Decimal, previous: Decimal) -> float | None:
    """Percent change; undefined (None) when growing from zero."""
    latest = Decimal(latest or 0)
    previous = Decimal(previous or 0)
    if previous == 0:
        return 0.0 if latest == 0 else None
    return round(float((latest - previous) / previous * 100), 2)


def trend_analysis(db: Session, tenant_id: int, months: int = 6) -> dict[str, Any]:
    if months < 2:
        raise ValueError("months must be at least 2")
    reports = get_historical_reports(db, tenant_id, ReportPeriodEnum.MONTHLY, months)
    if len(reports) < 2:
        return {
            "trend": "insufficient_data",
            "message": "Not enough historical data for trend analysis",
            "total_historical_reports": len(reports),
        }

    latest, previous = reports[0], reports[1]
    growth = {
        resource.value: growth_percentage(
            getattr(latest, SNAPSHOT_COLUMNS[resource]),
            getattr(previous, SNAPSHOT_COLUMNS[resource]),
        )
        for resource in ResourceType
    }
    total_cost = sum((Decimal(report.total_cost or 0) for report in reports), Decimal("0"))
    return {
        "trend": "calculated",
        "period": f"{months} months",
        "latest_period_start": latest.period_start.isoformat(),
        "previous_period_start": previous.period_start.isoformat(),
        "growth": growth,
        "average_monthly_cost": (total_cost / len(reports)).quantize(COST_PLACES),
        "total_historical_reports": len(reports),
    }


def export_usage_csv(
    db: Session,
    tenant_id: int,
    start: datetime,
    end: datetime,
) -> str:
    start = normalize_ts(start)
    end = normalize_ts(end)
    if end < start:
        raise ValueError("end must not be before start")
    usage = aggregate(db, tenant_id, start, end)
    costs = calculate_usage_costs(usage)

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    writer.writerow(
        [
            start.isoformat(),
            end.isoformat(),
            *(usage[resource] for resource in SNAPSHOT_COLUMNS),
            costs["total"],
        ]
    )
    return buffer.getvalue()
