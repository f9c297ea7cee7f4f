"""
Subscription lifecycle: creation, trial expiry, payment results, plan
changes and cancellation.

States are trialing, active, past_due and cancelled. Cancelled is terminal.
Every mutation loads the subscription with a row lock and the mapper's
version counter guards the write, so two payment results for the same
subscription can never interleave their status and failure-counter updates.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from metering.billing.errors import BillingError, InvalidStateError, NotFoundError
from metering.billing.proration import ProrationQuote, calculate_upgrade
from metering.core.best_effort import run_best_effort
from metering.core.config import settings
from metering.core.metrics import record_payment_result, record_transition
from metering.core.time import normalize_ts, utcnow
from metering.crud.payments import add_payment, get_payment_by_transaction_id
from metering.crud.plans import get_plan_by_id
from metering.crud.subscriptions import (
    get_open_subscription_for_tenant,
    get_subscription,
    get_subscription_for_update,
    list_expired_trials,
)
from metering.crud.tenants import get_tenant_by_id
from metering.models.enums import PaymentStatusEnum, SubscriptionStatusEnum
from metering.models.payments import Payment
from metering.models.subscriptions import Subscription
from metering.notifications.dispatcher import (
    PAYMENT_FAILED,
    SUBSCRIPTION_CANCELLED,
    emit,
    stage_payment_failed,
)


logger = logging.getLogger(__name__)

TRIALING = SubscriptionStatusEnum.TRIALING.value
ACTIVE = SubscriptionStatusEnum.ACTIVE.value
PAST_DUE = SubscriptionStatusEnum.PAST_DUE.value
CANCELLED = SubscriptionStatusEnum.CANCELLED.value

PAYMENT_FAILED_REASON = "payment_failed"

STATUS_BADGES = {
    ACTIVE: {"text": "Active", "color": "green"},
    TRIALING: {"text": "Trial", "color": "blue"},
    PAST_DUE: {"text": "Past Due", "color": "orange"},
    CANCELLED: {"text": "Cancelled", "color": "red"},
}


@dataclass
class PaymentResult:
    subscription: Subscription
    payment: Payment | None
    duplicate: bool = False


@dataclass
class PlanChange:
    subscription: Subscription
    quote: ProrationQuote
    changed: bool


def _cycle() -> timedelta:
    return timedelta(days=settings.BILLING_CYCLE_DAYS)


def _lock(db: Session, subscription_id: int) -> Subscription:
    subscription = get_subscription_for_update(db, subscription_id)
    if subscription is None:
        raise NotFoundError("subscription", subscription_id)
    return subscription


def _commit(db: Session, subscription: Subscription) -> None:
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        raise InvalidStateError(
            "Subscription was modified concurrently; reload and try again",
            current_status=subscription.status,
        ) from None


def _log_transition(subscription: Subscription, previous: str, **fields: Any) -> None:
    if previous == subscription.status:
        return
    record_transition(previous, subscription.status)
    logger.info(
        "subscription.transition",
        extra={
            "subscription_id": subscription.id,
            "tenant_id": subscription.tenant_id,
            "from_status": previous,
            "to_status": subscription.status,
            **fields,
        },
    )


def _apply_trial_expiry(subscription: Subscription, now: datetime) -> bool:
    """Move an expired trial to active without committing."""
    if subscription.status != TRIALING or subscription.trial_end is None:
        return False
    if subscription.trial_end > now:
        return False
    subscription.status = ACTIVE
    subscription.current_period_start = subscription.trial_end
    subscription.current_period_end = subscription.trial_end + _cycle()
    return True


def _roll_period_forward(subscription: Subscription, now: datetime) -> None:
    while subscription.current_period_end <= now:
        subscription.current_period_start = subscription.current_period_end
        subscription.current_period_end = subscription.current_period_start + _cycle()


def create_subscription(
    db: Session,
    tenant_id: int,
    plan_id: int,
    currency: str | None = None,
    *,
    now: datetime | None = None,
) -> Subscription:
    current = normalize_ts(now) or utcnow()
    code = (currency or settings.DEFAULT_CURRENCY).strip().upper()

    if get_tenant_by_id(db, tenant_id) is None:
        raise NotFoundError("tenant", tenant_id)
    plan = get_plan_by_id(db, plan_id)
    if plan is None or not plan.is_active:
        raise NotFoundError("plan", plan_id)
    price = plan.price_for(code)
    if price is None:
        raise NotFoundError("plan_price", f"{plan_id}/{code}")

    existing = get_open_subscription_for_tenant(db, tenant_id)
    if existing is not None:
        raise InvalidStateError(
            "Tenant already has an open subscription",
            current_status=existing.status,
        )

    trial_end = current + timedelta(days=plan.trial_days) if plan.trial_days else None
    subscription = Subscription(
        tenant_id=tenant_id,
        plan_id=plan.id,
        status=TRIALING if trial_end else ACTIVE,
        current_period_start=current,
        current_period_end=trial_end or current + _cycle(),
        trial_end=trial_end,
        currency=code,
        amount=Decimal(price.amount),
        consecutive_payment_failures=0,
    )
    db.add(subscription)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise InvalidStateError("Tenant already has an open subscription") from None
    db.refresh(subscription)
    record_transition("none", subscription.status)
    logger.info(
        "subscription.created",
        extra={
            "subscription_id": subscription.id,
            "tenant_id": tenant_id,
            "plan_id": plan.id,
            "status": subscription.status,
        },
    )
    return subscription


def refresh_trial_status(
    db: Session,
    subscription: Subscription,
    *,
    now: datetime | None = None,
) -> bool:
    """Apply trial expiry on read; returns True when the trial just ended.

    The change is flushed in a savepoint and committed with the caller's
    transaction (or by ``expire_trials``); reads never commit on their own.
    """
    current = normalize_ts(now) or utcnow()
    if subscription.status != TRIALING or subscription.trial_end is None or subscription.trial_end > current:
        return False
    try:
        with db.begin_nested():
            _apply_trial_expiry(subscription, current)
    except StaleDataError:
        # Another writer moved it first.
        db.refresh(subscription)
        return False
    _log_transition(subscription, TRIALING, reason="trial_expired")
    return True


def _expire_trial(db: Session, subscription: Subscription, now: datetime) -> bool:
    expired = refresh_trial_status(db, subscription, now=now)
    db.commit()
    return expired


def expire_trials(db: Session, *, now: datetime | None = None) -> int:
    current = normalize_ts(now) or utcnow()
    expired = 0
    for subscription in list_expired_trials(db, current):
        outcome = run_best_effort(
            "billing.expire_trial",
            _expire_trial,
            db,
            subscription,
            current,
            db=db,
            log_extra={"subscription_id": subscription.id},
        )
        if outcome.ok and outcome.value:
            expired += 1
    logger.info("billing.trials_expired", extra={"expired": expired})
    return expired


def status_badge(status: str) -> dict[str, str]:
    return dict(STATUS_BADGES.get(status, {"text": status, "color": "gray"}))


def days_until_trial_end(trial_end: datetime | None, now: datetime | None = None) -> int | None:
    if trial_end is None:
        return None
    current = normalize_ts(now) or utcnow()
    return math.ceil((trial_end - current).total_seconds() / 86400)


def get_subscription_details(
    db: Session,
    subscription_id: int,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    subscription = get_subscription(db, subscription_id)
    if subscription is None:
        raise NotFoundError("subscription", subscription_id)
    refresh_trial_status(db, subscription, now=now)
    plan = subscription.plan
    details = {
        "id": subscription.id,
        "tenant_id": subscription.tenant_id,
        "plan": {
            "id": plan.id,
            "name": plan.name,
            "version": plan.version,
            "tier": plan.tier,
            "trial_days": plan.trial_days,
            "limits": dict(plan.limits_json or {}),
        },
        "status": subscription.status,
        "badge": status_badge(subscription.status),
        "current_period_start": subscription.current_period_start,
        "current_period_end": subscription.current_period_end,
        "trial_end": subscription.trial_end,
        "days_until_trial_end": None,
        "cancelled_at": subscription.cancelled_at,
        "cancellation_reason": subscription.cancellation_reason,
        "currency": subscription.currency,
        "amount": subscription.amount,
        "consecutive_payment_failures": subscription.consecutive_payment_failures,
        "next_invoice": None,
    }
    if subscription.status == TRIALING:
        details["days_until_trial_end"] = days_until_trial_end(subscription.trial_end, now)
    if subscription.status != CANCELLED:
        details["next_invoice"] = {
            "amount": subscription.amount,
            "date": subscription.current_period_end,
        }
    return details


def cancel_subscription(
    db: Session,
    subscription_id: int,
    reason: str | None = None,
    *,
    now: datetime | None = None,
) -> Subscription:
    """Cancel from any state; cancelling twice is an InvalidStateError."""
    current = normalize_ts(now) or utcnow()
    subscription = _lock(db, subscription_id)
    if subscription.status == CANCELLED:
        db.rollback()
        raise InvalidStateError("Subscription is already cancelled", current_status=CANCELLED)

    previous = subscription.status
    subscription.status = CANCELLED
    subscription.cancelled_at = current
    subscription.cancellation_reason = reason
    _commit(db, subscription)
    db.refresh(subscription)

    _log_transition(subscription, previous, reason=reason)
    emit(
        SUBSCRIPTION_CANCELLED,
        {
            "tenant_id": subscription.tenant_id,
            "subscription_id": subscription.id,
            "reason": reason,
        },
    )
    return subscription


def _acknowledge_duplicate(
    db: Session,
    subscription_id: int,
    payment: Payment,
    transaction_id: str | None,
) -> PaymentResult:
    if payment.subscription_id != subscription_id:
        raise InvalidStateError(
            f"Transaction {transaction_id} was already applied to another subscription",
        )
    record_payment_result("duplicate")
    logger.info(
        "billing.payment_duplicate",
        extra={"subscription_id": subscription_id, "transaction_id": transaction_id},
    )
    return PaymentResult(subscription=get_subscription(db, subscription_id), payment=payment, duplicate=True)


def handle_payment_result(
    db: Session,
    subscription_id: int,
    success: bool,
    transaction_id: str | None,
    failure_code: str | None = None,
    *,
    amount: Decimal | None = None,
    now: datetime | None = None,
) -> PaymentResult:
    """Apply one payment outcome reported by the payment processor.

    A transaction id that was already applied is acknowledged without
    changing anything; one bound to another subscription is rejected.
    Failures move the subscription to past_due and stage a payment-failed
    notice; reaching the failure threshold cancels it.
    Success clears the failure counter, reactivates a past-due subscription
    and starts the next period when the current one has ended.
    """
    current = normalize_ts(now) or utcnow()
    existing_payment = get_payment_by_transaction_id(db, transaction_id)
    if existing_payment is not None:
        return _acknowledge_duplicate(db, subscription_id, existing_payment, transaction_id)

    subscription = _lock(db, subscription_id)
    if subscription.status == CANCELLED:
        db.rollback()
        raise InvalidStateError(
            "Payment results cannot be applied to a cancelled subscription",
            current_status=CANCELLED,
        )

    previous = subscription.status
    if _apply_trial_expiry(subscription, current):
        _log_transition(subscription, previous, reason="trial_expired")
        previous = subscription.status

    payment = add_payment(
        db,
        subscription_id=subscription.id,
        amount=Decimal(str(amount)) if amount is not None else Decimal(subscription.amount),
        currency=subscription.currency,
        status=(PaymentStatusEnum.COMPLETED if success else PaymentStatusEnum.FAILED).value,
        transaction_id=transaction_id,
        failure_code=None if success else failure_code,
    )

    cancelled = False
    if success:
        subscription.consecutive_payment_failures = 0
        if subscription.status == PAST_DUE:
            subscription.status = ACTIVE
        _roll_period_forward(subscription, current)
    else:
        failures = int(subscription.consecutive_payment_failures or 0) + 1
        subscription.consecutive_payment_failures = failures
        if failures >= settings.MAX_CONSECUTIVE_PAYMENT_FAILURES:
            subscription.status = CANCELLED
            subscription.cancelled_at = current
            subscription.cancellation_reason = PAYMENT_FAILED_REASON
            cancelled = True
        else:
            subscription.status = PAST_DUE
        stage_payment_failed(
            db,
            tenant_id=subscription.tenant_id,
            subscription_id=subscription.id,
            failure_count=failures,
            failure_code=failure_code,
            cancelled=cancelled,
        )

    try:
        _commit(db, subscription)
    except IntegrityError:
        db.rollback()
        concurrent = get_payment_by_transaction_id(db, transaction_id)
        if concurrent is None:
            raise
        # The same transaction id was applied concurrently.
        return _acknowledge_duplicate(db, subscription_id, concurrent, transaction_id)
    db.refresh(subscription)
    db.refresh(payment)

    record_payment_result("success" if success else "failure")
    _log_transition(subscription, previous, transaction_id=transaction_id)
    logger.info(
        "billing.payment_applied",
        extra={
            "subscription_id": subscription.id,
            "tenant_id": subscription.tenant_id,
            "success": success,
            "failures": subscription.consecutive_payment_failures,
            "status": subscription.status,
        },
    )
    if not success:
        emit(
            PAYMENT_FAILED,
            {
                "tenant_id": subscription.tenant_id,
                "subscription_id": subscription.id,
                "failure_count": subscription.consecutive_payment_failures,
                "failure_code": failure_code,
                "cancelled": cancelled,
            },
        )
    if cancelled:
        emit(
            SUBSCRIPTION_CANCELLED,
            {
                "tenant_id": subscription.tenant_id,
                "subscription_id": subscription.id,
                "reason": PAYMENT_FAILED_REASON,
            },
        )
    return PaymentResult(subscription=subscription, payment=payment)


def remaining_days_in_period(subscription: Subscription, now: datetime | None = None) -> int:
    current = normalize_ts(now) or utcnow()
    seconds = (subscription.current_period_end - current).total_seconds()
    days = math.ceil(seconds / 86400) if seconds > 0 else 0
    return min(days, settings.BILLING_CYCLE_DAYS)


def change_plan(
    db: Session,
    subscription_id: int,
    new_plan_id: int,
    *,
    now: datetime | None = None,
) -> PlanChange:
    """Quote the proration for the rest of the period and switch plans.

    Charging or crediting the quoted amount is the payment processor's job.
    """
    current = normalize_ts(now) or utcnow()
    subscription = _lock(db, subscription_id)
    if subscription.status == CANCELLED:
        db.rollback()
        raise InvalidStateError("Cannot change the plan of a cancelled subscription", current_status=CANCELLED)

    try:
        quote = calculate_upgrade(
            db,
            subscription.plan_id,
            new_plan_id,
            remaining_days_in_period(subscription, current),
            currency=subscription.currency,
        )
    except BillingError:
        db.rollback()
        raise
    if quote.from_plan_id == quote.to_plan_id:
        db.rollback()
        return PlanChange(subscription=subscription, quote=quote, changed=False)

    previous_plan_id = subscription.plan_id
    subscription.plan_id = quote.to_plan_id
    subscription.amount = quote.new_plan_price
    _commit(db, subscription)
    db.refresh(subscription)
    logger.info(
        "subscription.plan_changed",
        extra={
            "subscription_id": subscription.id,
            "tenant_id": subscription.tenant_id,
            "from_plan_id": previous_plan_id,
            "to_plan_id": quote.to_plan_id,
            "direction": quote.direction,
            "prorated_amount": str(quote.prorated_amount),
            "credit_amount": str(quote.credit_amount),
        },
    )
    return PlanChange(subscription=subscription, quote=quote, changed=True)
