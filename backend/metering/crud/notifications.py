from typing import Any

from sqlalchemy.orm import Session

from metering.models.notifications import Notification


def add_notification(
    db: Session,
    *,
    tenant_id: int,
    kind: str,
    title: str,
    message: str,
    payload: dict[str, Any] | None = None,
) -> Notification:
    """Stage a notification in the caller's transaction (no commit)."""
    notification = Notification(
        tenant_id=tenant_id,
        kind=kind,
        title=title,
        message=message,
        payload_json=payload or None,
    )
    db.add(notification)
    return notification


def list_notifications(
    db: Session,
    tenant_id: int,
    *,
    kind: str | None = None,
    unread_only: bool = False,
) -> list[Notification]:
    query = db.query(Notification).filter(Notification.tenant_id == tenant_id)
    if kind:
        query = query.filter(Notification.kind == kind)
    if unread_only:
        query = query.filter(Notification.read_at.is_(None))
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).all()
