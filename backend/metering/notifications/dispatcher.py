"""
Signals for notification plumbing.

Metering code emits named signals (threshold warnings, payment failures,
cancellations); delivery channels subscribe with ``register_listener``.
Listeners run best-effort: one failing listener never affects the caller or
the other listeners. Deduplication is the listener's job.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from sqlalchemy.orm import Session

from metering.core.best_effort import run_best_effort
from metering.core.config import settings
from metering.crud.notifications import add_notification
from metering.models.notifications import Notification


logger = logging.getLogger(__name__)

QUOTA_THRESHOLD_WARNING = "quota.threshold_warning"
PAYMENT_FAILED = "billing.payment_failed"
SUBSCRIPTION_CANCELLED = "billing.subscription_cancelled"

SIGNALS = {QUOTA_THRESHOLD_WARNING, PAYMENT_FAILED, SUBSCRIPTION_CANCELLED}

SignalListener = Callable[[dict[str, Any]], Any]

_LISTENERS: dict[str, list[SignalListener]] = {}


def register_listener(signal: str, listener: SignalListener) -> None:
    if signal not in SIGNALS:
        raise ValueError(f"Unsupported signal: {signal}")
    _LISTENERS.setdefault(signal, []).append(listener)


def clear_listeners() -> None:
    _LISTENERS.clear()


def emit(signal: str, payload: dict[str, Any]) -> int:
    """Deliver ``payload`` to every listener; returns how many succeeded."""
    delivered = 0
    for listener in list(_LISTENERS.get(signal, [])):
        outcome = run_best_effort(
            f"signal:{signal}",
            listener,
            payload,
            log_extra={"tenant_id": payload.get("tenant_id")},
        )
        if outcome.ok:
            delivered += 1
    logger.info(
        "signal.emitted",
        extra={"signal": signal, "tenant_id": payload.get("tenant_id"), "listeners": delivered},
    )
    return delivered


def notify_quota_threshold(
    tenant_id: int,
    resource_type: str,
    percent_used: float,
    *,
    current: Any,
    limit: Any,
) -> int:
    return emit(
        QUOTA_THRESHOLD_WARNING,
        {
            "tenant_id": tenant_id,
            "resource_type": resource_type,
            "percent_used": percent_used,
            "current": str(current),
            "limit": None if limit is None else str(limit),
        },
    )


def _billing_url() -> str | None:
    if not settings.APP_BASE_URL:
        return None
    return settings.APP_BASE_URL.rstrip("/") + "/billing"


def stage_payment_failed(
    db: Session,
    *,
    tenant_id: int,
    subscription_id: int,
    failure_count: int,
    failure_code: str | None,
    cancelled: bool,
) -> Notification:
    """Stage the user-facing notice in the caller's transaction."""
    if cancelled:
        message = (
            "Your subscription was cancelled after repeated failed payments. "
            "Update your payment method and subscribe again to restore your plan."
        )
    else:
        message = (
            "We could not process your latest payment. "
            "Please update your payment method to avoid cancellation."
        )
    return add_notification(
        db,
        tenant_id=tenant_id,
        kind=PAYMENT_FAILED,
        title="Payment failed",
        message=message,
        payload={
            "subscription_id": subscription_id,
            "failure_count": failure_count,
            "failure_code": failure_code,
            "cancelled": cancelled,
            "billing_url": _billing_url(),
        },
    )
