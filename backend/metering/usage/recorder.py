"""
Usage recording.

Recording observes a business operation; it never decides it. Any failure
here is logged and counted, and the caller carries on. Losing one usage data
point is preferable to failing the action it was measuring.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

from sqlalchemy import event
from sqlalchemy.orm import Session

from metering.core.best_effort import run_best_effort
from metering.core.db import SessionLocal
from metering.core.metrics import record_usage_event, record_usage_failure
from metering.core.time import normalize_ts, utcnow
from metering.crud.usage_events import create_usage_event
from metering.entitlements.enforcement import check_quota_warnings
from metering.models.usage_events import UsageEvent
from metering.usage.resources import parse_resource_type


logger = logging.getLogger(__name__)

# Callable that runs ``func(*args)`` later, e.g. ``BackgroundTasks.add_task``.
Scheduler = Callable[..., Any]

_warning_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="quota-warning")


def _append_event(
    db: Session,
    tenant_id: int,
    resource_type: str,
    quantity,
    metadata: dict[str, Any] | None,
    occurred_at: datetime | None,
) -> UsageEvent:
    resource = parse_resource_type(resource_type)
    amount = Decimal(str(quantity))
    if not amount.is_finite():
        raise ValueError("quantity must be finite")
    details = dict(metadata or {})
    endpoint = details.pop("endpoint", None)
    actor = details.pop("actor", None)
    usage_event = create_usage_event(
        db,
        tenant_id=tenant_id,
        resource_type=resource.value,
        quantity=amount,
        occurred_at=normalize_ts(occurred_at) or utcnow(),
        endpoint=endpoint,
        actor=None if actor is None else str(actor),
        metadata=details,
    )
    record_usage_event(resource.value)
    logger.info(
        "usage.recorded",
        extra={"tenant_id": tenant_id, "resource_type": resource.value, "quantity": str(amount)},
    )
    return usage_event


def _check_warnings(session: Session, tenant_id: int) -> list:
    near_limit = check_quota_warnings(session, tenant_id)
    # Keeps a trial expiry applied while resolving the entitlement.
    session.commit()
    return near_limit


def run_quota_warning_check(tenant_id: int) -> None:
    """Background entry point; owns its session since the request's is gone."""
    with SessionLocal() as session:
        run_best_effort(
            "usage.warning_check",
            _check_warnings,
            session,
            tenant_id,
            db=session,
            log_extra={"tenant_id": tenant_id},
        )


def _submit_warning_check(tenant_id: int) -> None:
    _warning_executor.submit(run_quota_warning_check, tenant_id)


def _dispatch_after_commit(db: Session, tenant_id: int) -> None:
    def _on_commit(_session: Session) -> None:
        run_best_effort(
            "usage.dispatch_warning_check",
            _submit_warning_check,
            tenant_id,
            log_extra={"tenant_id": tenant_id},
        )

    event.listen(db, "after_commit", _on_commit, once=True)


def record_usage(
    db: Session,
    tenant_id: int,
    resource_type: str,
    quantity: Decimal | int | float,
    metadata: dict[str, Any] | None = None,
    *,
    occurred_at: datetime | None = None,
    schedule: Scheduler | None = None,
) -> UsageEvent | None:
    """Append a usage event; returns it, or None when recording failed.

    The event is staged in a savepoint of the caller's transaction and is
    persisted by the caller's commit. A failed append rolls back only that
    savepoint. Negative quantities are compensating entries. ``endpoint`` and
    ``actor`` keys in ``metadata`` are stored in their own columns.

    ``storage`` events are kept as an audit trail only: the storage gauge is
    read from completed uploads, so they never change quota or reports.

    The tenant's quota warnings are re-evaluated off the caller's thread:
    through ``schedule`` when given (e.g. ``BackgroundTasks.add_task``),
    otherwise on a worker thread once the caller's transaction commits.
    """
    outcome = run_best_effort(
        "usage.record",
        _append_event,
        db,
        tenant_id,
        resource_type,
        quantity,
        metadata,
        occurred_at,
        savepoint=db,
        log_extra={"tenant_id": tenant_id, "resource_type": str(resource_type)},
    )
    if not outcome.ok:
        record_usage_failure(str(resource_type))
        return None

    if schedule is not None:
        run_best_effort("usage.schedule_warning_check", schedule, run_quota_warning_check, tenant_id)
    else:
        _dispatch_after_commit(db, tenant_id)
    return outcome.value
