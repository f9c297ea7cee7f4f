from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field


class ProrationQuoteRead(BaseModel):
    from_plan_id: int
    to_plan_id: int
    currency: str
    remaining_days: int
    days_in_cycle: int
    old_plan_price: Decimal
    new_plan_price: Decimal
    daily_rate_old: Decimal
    daily_rate_new: Decimal
    unused_credit: Decimal
    new_cost: Decimal
    prorated_amount: Decimal
    credit_amount: Decimal
    direction: str


class SubscriptionCreate(BaseModel):
    plan_id: int
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)


class SubscriptionCancel(BaseModel):
    reason: Optional[str] = None


class PlanChangeRequest(BaseModel):
    plan_id: int


class SubscriptionRead(BaseModel):
    id: int
    tenant_id: int
    plan_id: int
    status: str
    current_period_start: datetime
    current_period_end: datetime
    trial_end: Optional[datetime] = None
    currency: str
    amount: Decimal
    consecutive_payment_failures: int
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class SubscriptionDetailsResponse(BaseModel):
    id: int
    tenant_id: int
    plan: dict[str, Any]
    status: str
    badge: dict[str, str]
    current_period_start: datetime
    current_period_end: datetime
    trial_end: Optional[datetime] = None
    days_until_trial_end: Optional[int] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    currency: str
    amount: Decimal
    consecutive_payment_failures: int
    next_invoice: Optional[dict[str, Any]] = None


class PlanChangeResponse(BaseModel):
    changed: bool
    subscription: SubscriptionRead
    quote: ProrationQuoteRead


class PaymentResultCreate(BaseModel):
    subscription_id: int
    success: bool
    transaction_id: str = Field(min_length=1)
    failure_code: Optional[str] = None
    amount: Optional[Decimal] = Field(default=None, ge=0)


class PaymentResultResponse(BaseModel):
    duplicate: bool
    payment_id: Optional[int] = None
    payment_status: Optional[str] = None
    subscription: SubscriptionRead


class PlanPriceRead(BaseModel):
    currency: str
    billing_period: str
    amount: Decimal

    class Config:
        from_attributes = True


class PlanRead(BaseModel):
    id: int
    name: str
    version: int
    tier: Optional[str] = None
    trial_days: int
    limits_json: dict[str, Any] = {}
    prices: list[PlanPriceRead] = []

    class Config:
        from_attributes = True
