from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    text,
)
from sqlalchemy.orm import relationship

from metering.core.db import Base
from metering.models.mixins import TimestampMixin


class Subscription(TimestampMixin, Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        # At most one non-cancelled subscription per tenant.
        Index(
            "uq_subscriptions_tenant_open",
            "tenant_id",
            unique=True,
            postgresql_where=text("status != 'cancelled'"),
            sqlite_where=text("status != 'cancelled'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(
        Integer,
        ForeignKey("tenants.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    plan_id = Column(
        Integer,
        ForeignKey("plans.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    status = Column(String, nullable=False, default="active", index=True)
    current_period_start = Column(DateTime, nullable=False)
    current_period_end = Column(DateTime, nullable=False, index=True)
    trial_end = Column(DateTime, nullable=True)
    currency = Column(String(3), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    consecutive_payment_failures = Column(Integer, nullable=False, default=0)
    cancellation_reason = Column(String, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    # Bumped on every flush; a concurrent writer holding a stale row gets
    # StaleDataError instead of silently overwriting status or counter.
    version_id = Column(Integer, nullable=False)

    tenant = relationship("Tenant", back_populates="subscriptions", lazy="selectin")
    plan = relationship("Plan", back_populates="subscriptions", lazy="selectin")
    payments = relationship("Payment", back_populates="subscription", lazy="select")

    __mapper_args__ = {"version_id_col": version_id}
