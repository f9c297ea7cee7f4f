from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from metering.core.db import Base
from metering.models.mixins import TimestampMixin


class Tenant(TimestampMixin, Base):
    """A workspace: the billing unit that owns a subscription and its usage."""

    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    deleted_at = Column(DateTime, nullable=True)

    subscriptions = relationship("Subscription", back_populates="tenant", lazy="selectin")
    usage_events = relationship("UsageEvent", back_populates="tenant", lazy="select")
    audio_uploads = relationship("AudioUpload", back_populates="tenant", lazy="select")
    usage_snapshots = relationship("UsageSnapshot", back_populates="tenant", lazy="select")
    notifications = relationship("Notification", back_populates="tenant", lazy="select")
