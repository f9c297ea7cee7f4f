from datetime import datetime

from sqlalchemy.orm import Session

from metering.models.usage_snapshots import UsageSnapshot


def get_snapshot(
    db: Session,
    tenant_id: int,
    period: str,
    period_start: datetime,
) -> UsageSnapshot | None:
    return (
        db.query(UsageSnapshot)
        .filter(
            UsageSnapshot.tenant_id == tenant_id,
            UsageSnapshot.period == period,
            UsageSnapshot.period_start == period_start,
        )
        .first()
    )


def list_snapshots(
    db: Session,
    tenant_id: int,
    period: str,
    limit: int,
) -> list[UsageSnapshot]:
    return (
        db.query(UsageSnapshot)
        .filter(UsageSnapshot.tenant_id == tenant_id, UsageSnapshot.period == period)
        .order_by(UsageSnapshot.period_start.desc())
        .limit(limit)
        .all()
    )
