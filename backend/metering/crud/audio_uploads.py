from sqlalchemy import func
from sqlalchemy.orm import Session

from metering.models.audio_uploads import AudioUpload
from metering.models.enums import UploadStatusEnum


def create_upload(
    db: Session,
    *,
    tenant_id: int,
    file_name: str,
    size_bytes: int,
    status: str = UploadStatusEnum.PENDING.value,
) -> AudioUpload:
    if size_bytes < 0:
        raise ValueError("size_bytes must be non-negative")
    upload = AudioUpload(
        tenant_id=tenant_id,
        file_name=file_name,
        size_bytes=size_bytes,
        status=status,
    )
    db.add(upload)
    db.commit()
    db.refresh(upload)
    return upload


def sum_completed_bytes(db: Session, tenant_id: int) -> int:
    total = (
        db.query(func.coalesce(func.sum(AudioUpload.size_bytes), 0))
        .filter(
            AudioUpload.tenant_id == tenant_id,
            AudioUpload.status == UploadStatusEnum.COMPLETED.value,
        )
        .scalar()
    )
    return int(total or 0)
