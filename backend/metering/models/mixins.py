from sqlalchemy import Column, DateTime

from metering.core.time import utcnow


class TimestampMixin:
    # Naive UTC, like every other timestamp in the schema.
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
