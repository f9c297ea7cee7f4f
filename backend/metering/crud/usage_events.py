from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy import func
from sqlalchemy.orm import Session

from metering.models.usage_events import UsageEvent


def create_usage_event(
    db: Session,
    *,
    tenant_id: int,
    resource_type: str,
    quantity: Decimal,
    occurred_at: datetime,
    endpoint: str | None = None,
    actor: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> UsageEvent:
    """Stage a usage event in the caller's transaction (no commit)."""
    event = UsageEvent(
        tenant_id=tenant_id,
        resource_type=resource_type,
        quantity=quantity,
        occurred_at=occurred_at,
        endpoint=endpoint,
        actor=actor,
        metadata_json=metadata or None,
    )
    db.add(event)
    db.flush()
    return event


def sum_by_resource(
    db: Session,
    tenant_id: int,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    resource_types: Iterable[str] | None = None,
) -> dict[str, Decimal]:
    query = db.query(UsageEvent.resource_type, func.sum(UsageEvent.quantity)).filter(
        UsageEvent.tenant_id == tenant_id
    )
    if start is not None:
        query = query.filter(UsageEvent.occurred_at >= start)
    if end is not None:
        query = query.filter(UsageEvent.occurred_at <= end)
    if resource_types is not None:
        query = query.filter(UsageEvent.resource_type.in_(list(resource_types)))
    rows = query.group_by(UsageEvent.resource_type).all()
    return {resource_type: Decimal(str(total or 0)) for resource_type, total in rows}


def delete_events_in_window(
    db: Session,
    tenant_id: int,
    *,
    start: datetime,
    end: datetime,
    resource_types: Iterable[str],
) -> int:
    deleted = (
        db.query(UsageEvent)
        .filter(
            UsageEvent.tenant_id == tenant_id,
            UsageEvent.resource_type.in_(list(resource_types)),
            UsageEvent.occurred_at >= start,
            UsageEvent.occurred_at <= end,
        )
        .delete(synchronize_session=False)
    )
    return int(deleted or 0)
