from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from metering.api.dependencies import get_tenant_id
from metering.core.db import get_db
from metering.entitlements.catalog import resolve_entitlement
from metering.entitlements.enforcement import clamp_percent, enforce_quota, usage_status_color
from metering.schemas.usage import (
    EntitlementResponse,
    QuotaDecisionResponse,
    QuotaEnforceRequest,
    ResourceUsageRead,
    UsageRecordCreate,
    UsageRecordResponse,
    UsageReportResponse,
    UsageSnapshotRead,
    UsageStatisticRead,
    UsageSummaryResponse,
    UsageTrendResponse,
)
from metering.usage.aggregator import get_usage, usage_statistics
from metering.usage.recorder import record_usage
from metering.usage.reporting import (
    export_usage_csv,
    generate_report,
    get_historical_reports,
    trend_analysis,
)


router = APIRouter(prefix="/usage", tags=["usage"])


def _bad_request(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.get("", response_model=UsageSummaryResponse)
def read_usage(
    start: datetime | None = None,
    end: datetime | None = None,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    try:
        summary = get_usage(db, tenant_id, start, end)
    except ValueError as exc:
        raise _bad_request(exc) from exc
    resources = []
    for resource, used in summary.totals.items():
        percent = summary.percent_used[resource]
        resources.append(
            ResourceUsageRead(
                resource_type=resource.value,
                used=used,
                limit=summary.limits[resource],
                unlimited=summary.limits[resource] is None,
                percent_used=clamp_percent(percent),
                status_color=usage_status_color(percent),
            )
        )
    return UsageSummaryResponse(
        tenant_id=tenant_id,
        window_start=summary.window_start,
        window_end=summary.window_end,
        resources=resources,
    )


@router.get("/entitlement", response_model=EntitlementResponse)
def read_entitlement(
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return resolve_entitlement(db, tenant_id).to_payload()


@router.post("/enforce", response_model=QuotaDecisionResponse)
def enforce(
    payload: QuotaEnforceRequest,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    try:
        decision = enforce_quota(db, tenant_id, payload.resource_type, payload.amount)
    except ValueError as exc:
        raise _bad_request(exc) from exc
    response = QuotaDecisionResponse(
        allowed=decision.allowed,
        resource_type=decision.resource_type.value,
        reason=decision.reason,
        suggestion=decision.suggestion,
        upgrade_plan_key=decision.upgrade_plan_key,
        fail_open=decision.fail_open,
    )
    if decision.check is not None:
        response.exceeded = decision.check.exceeded
        response.current = decision.check.current
        response.projected = decision.check.projected
        response.limit = decision.check.limit
        response.percent_used = clamp_percent(decision.check.percent_used)
    return response


@router.post("/record", response_model=UsageRecordResponse, status_code=status.HTTP_202_ACCEPTED)
def record(
    payload: UsageRecordCreate,
    background_tasks: BackgroundTasks,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    metadata = dict(payload.metadata or {})
    if payload.endpoint:
        metadata["endpoint"] = payload.endpoint
    if payload.actor:
        metadata["actor"] = payload.actor
    event = record_usage(
        db,
        tenant_id,
        payload.resource_type,
        payload.quantity,
        metadata,
        schedule=background_tasks.add_task,
    )
    event_id = event.id if event is not None else None
    db.commit()
    return UsageRecordResponse(recorded=event is not None, event_id=event_id)


@router.get("/report", response_model=UsageReportResponse)
def read_report(
    period: str = "monthly",
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    try:
        report = generate_report(db, tenant_id, period)
    except ValueError as exc:
        raise _bad_request(exc) from exc
    return report.to_payload()


@router.get("/history", response_model=list[UsageSnapshotRead])
def read_history(
    period: str = "monthly",
    limit: int | None = Query(default=None, ge=1, le=120),
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    try:
        return get_historical_reports(db, tenant_id, period, limit)
    except ValueError as exc:
        raise _bad_request(exc) from exc


@router.get("/trends", response_model=UsageTrendResponse)
def read_trends(
    months: int = Query(default=6, ge=2, le=60),
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return trend_analysis(db, tenant_id, months)


@router.get("/statistics", response_model=list[UsageStatisticRead])
def read_statistics(
    days: int = Query(default=30, ge=1, le=366),
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return usage_statistics(db, tenant_id, days)


@router.get("/export")
def export_usage(
    start: datetime,
    end: datetime,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    try:
        content = export_usage_csv(db, tenant_id, start, end)
    except ValueError as exc:
        raise _bad_request(exc) from exc
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="usage-{tenant_id}.csv"'},
    )
