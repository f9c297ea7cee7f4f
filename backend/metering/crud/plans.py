from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from metering.models.plans import Plan, PlanPrice


def get_plan_by_id(db: Session, plan_id: int) -> Plan | None:
    return db.query(Plan).filter(Plan.id == plan_id).first()


def get_plan_by_name(db: Session, name: str) -> Plan | None:
    return (
        db.query(Plan)
        .filter(Plan.name == name, Plan.is_active.is_(True))
        .order_by(Plan.version.desc())
        .first()
    )


def list_active_plans(db: Session) -> list[Plan]:
    return db.query(Plan).filter(Plan.is_active.is_(True)).order_by(Plan.id).all()


def _build_prices(prices: dict[str, Any] | None) -> list[PlanPrice]:
    rows = []
    for currency, amount in (prices or {}).items():
        rows.append(
            PlanPrice(
                currency=currency.strip().upper(),
                billing_period="monthly",
                amount=Decimal(str(amount)),
            )
        )
    return rows


def create_plan(
    db: Session,
    *,
    name: str,
    limits: dict[str, Any] | None = None,
    prices: dict[str, Any] | None = None,
    trial_days: int = 0,
    tier: str | None = None,
    version: int = 1,
) -> Plan:
    plan = Plan(
        name=name,
        version=version,
        tier=tier,
        limits_json=dict(limits or {}),
        trial_days=trial_days,
        is_active=True,
    )
    plan.prices = _build_prices(prices)
    db.add(plan)
    db.commit()
    db.refresh(plan)
    return plan


def publish_plan_version(
    db: Session,
    plan: Plan,
    *,
    limits: dict[str, Any] | None = None,
    prices: dict[str, Any] | None = None,
    trial_days: int | None = None,
) -> Plan:
    """Retire ``plan`` and create its successor; existing rows stay untouched."""
    current_prices = {price.currency: price.amount for price in plan.prices or []}
    successor = Plan(
        name=plan.name,
        version=plan.version + 1,
        tier=plan.tier,
        limits_json=dict(limits if limits is not None else plan.limits_json or {}),
        trial_days=plan.trial_days if trial_days is None else trial_days,
        is_active=True,
    )
    successor.prices = _build_prices(prices if prices is not None else current_prices)
    plan.is_active = False
    db.add(successor)
    db.commit()
    db.refresh(successor)
    return successor
