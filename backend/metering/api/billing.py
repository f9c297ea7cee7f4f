from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from metering.api.dependencies import get_tenant_id
from metering.billing.lifecycle import (
    cancel_subscription,
    change_plan,
    create_subscription,
    get_subscription_details,
    handle_payment_result,
)
from metering.billing.proration import calculate_upgrade
from metering.core.db import get_db
from metering.crud.plans import list_active_plans
from metering.crud.subscriptions import get_latest_subscription_for_tenant, get_subscription
from metering.schemas.billing import (
    PaymentResultCreate,
    PaymentResultResponse,
    PlanChangeRequest,
    PlanChangeResponse,
    PlanRead,
    ProrationQuoteRead,
    SubscriptionCancel,
    SubscriptionCreate,
    SubscriptionDetailsResponse,
    SubscriptionRead,
)


router = APIRouter(prefix="/billing", tags=["billing"])


def _require_owned_subscription(db: Session, subscription_id: int, tenant_id: int) -> None:
    subscription = get_subscription(db, subscription_id)
    if not subscription or subscription.tenant_id != tenant_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found")


@router.get("/plans", response_model=list[PlanRead])
def read_plans(db: Session = Depends(get_db)):
    return list_active_plans(db)


@router.get("/proration", response_model=ProrationQuoteRead)
def read_proration(
    from_plan_id: int,
    to_plan_id: int,
    remaining_days: int = Query(ge=0),
    currency: str | None = None,
    db: Session = Depends(get_db),
):
    return calculate_upgrade(db, from_plan_id, to_plan_id, remaining_days, currency=currency).to_payload()


@router.post("/subscriptions", response_model=SubscriptionRead, status_code=status.HTTP_201_CREATED)
def create_tenant_subscription(
    payload: SubscriptionCreate,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return create_subscription(db, tenant_id, payload.plan_id, payload.currency)


@router.get("/subscriptions/current", response_model=SubscriptionDetailsResponse)
def read_current_subscription(
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    subscription = get_latest_subscription_for_tenant(db, tenant_id)
    if not subscription:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found")
    return get_subscription_details(db, subscription.id)


@router.post("/subscriptions/{subscription_id}/cancel", response_model=SubscriptionRead)
def cancel_tenant_subscription(
    subscription_id: int,
    payload: SubscriptionCancel | None = None,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    _require_owned_subscription(db, subscription_id, tenant_id)
    return cancel_subscription(db, subscription_id, payload.reason if payload else None)


@router.post("/subscriptions/{subscription_id}/change-plan", response_model=PlanChangeResponse)
def change_tenant_plan(
    subscription_id: int,
    payload: PlanChangeRequest,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    _require_owned_subscription(db, subscription_id, tenant_id)
    result = change_plan(db, subscription_id, payload.plan_id)
    return PlanChangeResponse(
        changed=result.changed,
        subscription=SubscriptionRead.model_validate(result.subscription),
        quote=ProrationQuoteRead(**result.quote.to_payload()),
    )


@router.post("/payments/result", response_model=PaymentResultResponse)
def apply_payment_result(
    payload: PaymentResultCreate,
    db: Session = Depends(get_db),
):
    result = handle_payment_result(
        db,
        payload.subscription_id,
        payload.success,
        payload.transaction_id,
        payload.failure_code,
        amount=payload.amount,
    )
    return PaymentResultResponse(
        duplicate=result.duplicate,
        payment_id=result.payment.id if result.payment else None,
        payment_status=result.payment.status if result.payment else None,
        subscription=SubscriptionRead.model_validate(result.subscription),
    )
