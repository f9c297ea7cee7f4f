from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from metering.core.db import Base
from metering.core.time import utcnow


class Payment(Base):
    """One billing attempt reported by the payment processor."""

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    subscription_id = Column(
        Integer,
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(String, nullable=False, default="pending", index=True)
    gateway_transaction_id = Column(String, nullable=True, unique=True)
    failure_code = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    subscription = relationship("Subscription", back_populates="payments")
