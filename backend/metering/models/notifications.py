from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from metering.core.db import Base
from metering.core.time import utcnow


JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


class Notification(Base):
    """User-facing notice waiting for the notification plumbing to deliver it."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(
        Integer,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    kind = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    payload_json = Column(JSON_TYPE, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    read_at = Column(DateTime, nullable=True)

    tenant = relationship("Tenant", back_populates="notifications")
