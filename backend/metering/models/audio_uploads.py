from sqlalchemy import BigInteger, Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from metering.core.db import Base
from metering.models.mixins import TimestampMixin


class AudioUpload(TimestampMixin, Base):
    """Stored audio object. Completed uploads make up the storage gauge."""

    __tablename__ = "audio_uploads"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(
        Integer,
        ForeignKey("tenants.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    file_name = Column(String, nullable=False)
    size_bytes = Column(BigInteger, nullable=False, default=0)
    status = Column(String, nullable=False, default="pending", index=True)

    tenant = relationship("Tenant", back_populates="audio_uploads")
