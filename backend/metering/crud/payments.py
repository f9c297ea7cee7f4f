from decimal import Decimal

from sqlalchemy.orm import Session

from metering.models.payments import Payment


def get_payment_by_transaction_id(db: Session, transaction_id: str) -> Payment | None:
    if not transaction_id:
        return None
    return db.query(Payment).filter(Payment.gateway_transaction_id == transaction_id).first()


def add_payment(
    db: Session,
    *,
    subscription_id: int,
    amount: Decimal,
    currency: str,
    status: str,
    transaction_id: str | None,
    failure_code: str | None = None,
) -> Payment:
    """Stage a payment row in the caller's transaction (no commit)."""
    payment = Payment(
        subscription_id=subscription_id,
        amount=amount,
        currency=currency,
        status=status,
        gateway_transaction_id=transaction_id or None,
        failure_code=failure_code,
    )
    db.add(payment)
    return payment


def list_payments_for_subscription(db: Session, subscription_id: int, limit: int = 10) -> list[Payment]:
    return (
        db.query(Payment)
        .filter(Payment.subscription_id == subscription_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .limit(limit)
        .all()
    )
