from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from metering.core.db import Base
from metering.models.mixins import TimestampMixin


JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


class Plan(TimestampMixin, Base):
    # Plans are never edited in place once subscribed to; a change ships as
    # a new row with a bumped version and the old one is deactivated.
    __tablename__ = "plans"
    __table_args__ = (
        UniqueConstraint("name", "version", name="uq_plans_name_version"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    version = Column(Integer, nullable=False, default=1)
    tier = Column(String, nullable=True, index=True)
    limits_json = Column(JSON_TYPE, nullable=False, default=dict)
    trial_days = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    prices = relationship(
        "PlanPrice",
        back_populates="plan",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    subscriptions = relationship("Subscription", back_populates="plan", lazy="select")

    def price_for(self, currency: str, billing_period: str = "monthly"):
        for price in self.prices or []:
            if price.currency == currency and price.billing_period == billing_period:
                return price
        return None


class PlanPrice(Base):
    __tablename__ = "plan_prices"
    __table_args__ = (
        UniqueConstraint(
            "plan_id",
            "currency",
            "billing_period",
            name="uq_plan_prices_plan_currency_period",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    plan_id = Column(
        Integer,
        ForeignKey("plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    currency = Column(String(3), nullable=False)
    billing_period = Column(String, nullable=False, default="monthly")
    amount = Column(Numeric(12, 2), nullable=False)

    plan = relationship("Plan", back_populates="prices")
