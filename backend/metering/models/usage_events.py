from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from metering.core.db import Base
from metering.core.time import utcnow


JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


class UsageEvent(Base):
    # Append-only ledger. Rows are never updated; corrections are written as
    # compensating events, and only archival purges them in bulk.
    __tablename__ = "usage_events"
    __table_args__ = (
        Index("ix_usage_events_tenant_resource_ts", "tenant_id", "resource_type", "occurred_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(
        Integer,
        ForeignKey("tenants.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    resource_type = Column(String, nullable=False)
    # Wide enough for byte-precise storage totals and fractional minutes.
    quantity = Column(Numeric(24, 4), nullable=False)
    occurred_at = Column(DateTime, default=utcnow, nullable=False)
    endpoint = Column(String, nullable=True)
    actor = Column(String, nullable=True)
    metadata_json = Column(JSON_TYPE, nullable=True)

    tenant = relationship("Tenant", back_populates="usage_events")
