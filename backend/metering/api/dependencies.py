from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from metering.core.config import settings
from metering.core.db import get_db
from metering.crud.tenants import resolve_tenant


def get_tenant_id(request: Request, db: Session = Depends(get_db)) -> int:
    """Tenant named by the tenant header, as an id or a slug."""
    tenant_hint = request.headers.get(settings.TENANT_HEADER_NAME)
    if not tenant_hint:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    tenant = resolve_tenant(db, tenant_hint)
    if not tenant or not tenant.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    return tenant.id
