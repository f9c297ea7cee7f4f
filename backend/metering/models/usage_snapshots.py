from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from metering.core.db import Base
from metering.core.time import utcnow


JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


class UsageSnapshot(Base):
    __tablename__ = "usage_snapshots"
    __table_args__ = (
        UniqueConstraint("tenant_id", "period", "period_start", name="uq_usage_snapshots_period"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(
        Integer,
        ForeignKey("tenants.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    period = Column(String, nullable=False)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    storage_bytes = Column(Numeric(24, 0), nullable=False, default=0)
    processing_minutes = Column(Numeric(24, 4), nullable=False, default=0)
    api_calls = Column(Numeric(24, 4), nullable=False, default=0)
    transcription_minutes = Column(Numeric(24, 4), nullable=False, default=0)
    ai_tokens = Column(Numeric(24, 4), nullable=False, default=0)
    total_cost = Column(Numeric(14, 6), nullable=False, default=0)
    # {"costs": {...}, "percent_used": {...}, "limits": {...}}
    metadata_json = Column(JSON_TYPE, nullable=False, default=dict)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    tenant = relationship("Tenant", back_populates="usage_snapshots")
