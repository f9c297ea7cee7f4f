from datetime import datetime

from sqlalchemy.orm import Session, selectinload

from metering.models.enums import SubscriptionStatusEnum
from metering.models.subscriptions import Subscription

ENTITLED_STATUSES = {
    SubscriptionStatusEnum.ACTIVE.value,
    SubscriptionStatusEnum.TRIALING.value,
}
OPEN_STATUSES = {
    SubscriptionStatusEnum.ACTIVE.value,
    SubscriptionStatusEnum.TRIALING.value,
    SubscriptionStatusEnum.PAST_DUE.value,
}


def get_subscription(db: Session, subscription_id: int) -> Subscription | None:
    return db.query(Subscription).filter(Subscription.id == subscription_id).first()


def get_subscription_for_update(db: Session, subscription_id: int) -> Subscription | None:
    # Row lock on databases that support it; the version_id column covers the rest.
    return (
        db.query(Subscription)
        .filter(Subscription.id == subscription_id)
        .with_for_update()
        .populate_existing()
        .first()
    )


def get_open_subscription_for_tenant(db: Session, tenant_id: int) -> Subscription | None:
    return (
        db.query(Subscription)
        .filter(
            Subscription.tenant_id == tenant_id,
            Subscription.status.in_(OPEN_STATUSES),
        )
        .order_by(Subscription.id.desc())
        .first()
    )


def get_entitled_subscription_for_tenant(db: Session, tenant_id: int) -> Subscription | None:
    return (
        db.query(Subscription)
        .options(selectinload(Subscription.plan))
        .filter(
            Subscription.tenant_id == tenant_id,
            Subscription.status.in_(ENTITLED_STATUSES),
        )
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .first()
    )


def get_latest_subscription_for_tenant(db: Session, tenant_id: int) -> Subscription | None:
    return (
        db.query(Subscription)
        .filter(Subscription.tenant_id == tenant_id)
        .order_by(Subscription.id.desc())
        .first()
    )


def list_expired_trials(db: Session, now: datetime) -> list[Subscription]:
    return (
        db.query(Subscription)
        .filter(
            Subscription.status == SubscriptionStatusEnum.TRIALING.value,
            Subscription.trial_end.isnot(None),
            Subscription.trial_end <= now,
        )
        .order_by(Subscription.id)
        .all()
    )
