from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy.orm import Session

from metering.billing.errors import ProrationInputError
from metering.core.config import settings
from metering.crud.plans import get_plan_by_id
from metering.models.plans import Plan


CENTS = Decimal("0.01")
ZERO = Decimal("0.00")

DIRECTION_CHARGE = "charge"
DIRECTION_CREDIT = "credit"
DIRECTION_NONE = "none"


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class ProrationQuote:
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

    def to_payload(self) -> dict[str, Any]:
        return {
            "from_plan_id": self.from_plan_id,
            "to_plan_id": self.to_plan_id,
            "currency": self.currency,
            "remaining_days": self.remaining_days,
            "days_in_cycle": self.days_in_cycle,
            "old_plan_price": self.old_plan_price,
            "new_plan_price": self.new_plan_price,
            "daily_rate_old": self.daily_rate_old,
            "daily_rate_new": self.daily_rate_new,
            "unused_credit": self.unused_credit,
            "new_cost": self.new_cost,
            "prorated_amount": self.prorated_amount,
            "credit_amount": self.credit_amount,
            "direction": self.direction,
        }


def _load_plan(db: Session, plan_id: int, *, require_active: bool) -> Plan:
    plan = get_plan_by_id(db, plan_id) if plan_id is not None else None
    if plan is None:
        raise ProrationInputError(f"Plan {plan_id} does not exist")
    if require_active and not plan.is_active:
        raise ProrationInputError(f"Plan {plan_id} is no longer available")
    return plan


def _monthly_price(plan: Plan, currency: str) -> Decimal:
    price = plan.price_for(currency)
    if price is None:
        raise ProrationInputError(f"Plan {plan.id} has no {currency} price")
    return Decimal(price.amount)


def calculate_upgrade(
    db: Session,
    from_plan_id: int,
    to_plan_id: int,
    remaining_days: int,
    *,
    currency: str | None = None,
    days_in_cycle: int | None = None,
) -> ProrationQuote:
    """Cost of moving between plans with ``remaining_days`` left in the cycle.

    ``prorated_amount`` is what to charge now and is never negative. When
    the new plan is cheaper the difference is returned as ``credit_amount``
    with direction "credit". Moving to the same plan is never a billing
    event and quotes zero.
    """
    cycle = days_in_cycle if days_in_cycle is not None else settings.BILLING_CYCLE_DAYS
    if isinstance(remaining_days, bool) or not isinstance(remaining_days, int):
        raise ProrationInputError("remaining_days must be a whole number of days")
    if cycle <= 0:
        raise ProrationInputError("days_in_cycle must be positive")
    if remaining_days < 0 or remaining_days > cycle:
        raise ProrationInputError(f"remaining_days must be between 0 and {cycle}")

    code = (currency or settings.DEFAULT_CURRENCY).strip().upper()
    old_plan = _load_plan(db, from_plan_id, require_active=False)
    new_plan = old_plan if to_plan_id == from_plan_id else _load_plan(db, to_plan_id, require_active=True)

    old_price = _monthly_price(old_plan, code)
    new_price = _monthly_price(new_plan, code)
    days = Decimal(cycle)
    remaining = Decimal(remaining_days)

    if old_plan.id == new_plan.id:
        credit = cost = ZERO
    else:
        credit = _money(old_price * remaining / days)
        cost = _money(new_price * remaining / days)

    difference = cost - credit
    if difference > 0:
        direction, charge, refund = DIRECTION_CHARGE, difference, ZERO
    elif difference < 0:
        direction, charge, refund = DIRECTION_CREDIT, ZERO, -difference
    else:
        direction, charge, refund = DIRECTION_NONE, ZERO, ZERO

    return ProrationQuote(
        from_plan_id=old_plan.id,
        to_plan_id=new_plan.id,
        currency=code,
        remaining_days=remaining_days,
        days_in_cycle=cycle,
        old_plan_price=_money(old_price),
        new_plan_price=_money(new_price),
        daily_rate_old=_money(old_price / days),
        daily_rate_new=_money(new_price / days),
        unused_credit=credit,
        new_cost=cost,
        prorated_amount=charge,
        credit_amount=refund,
        direction=direction,
    )
