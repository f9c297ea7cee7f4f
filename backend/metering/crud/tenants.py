import re

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from metering.models.tenants import Tenant


def _slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")
    return slug or "workspace"


def _next_free_slug(db: Session, base_slug: str) -> str:
    taken = {
        row[0]
        for row in db.query(Tenant.slug)
        .filter((Tenant.slug == base_slug) | Tenant.slug.like(f"{base_slug}-%"))
        .all()
    }
    if base_slug not in taken:
        return base_slug
    suffix = 2
    while f"{base_slug}-{suffix}" in taken:
        suffix += 1
    return f"{base_slug}-{suffix}"


def create_tenant(db: Session, name: str, slug: str | None = None) -> Tenant:
    """Create an active workspace; a taken slug gets a numeric suffix."""
    unique_slug = _next_free_slug(db, _slugify(slug or name))
    tenant = Tenant(name=name, slug=unique_slug, is_active=True)
    db.add(tenant)
    try:
        db.commit()
        db.refresh(tenant)
        return tenant
    except IntegrityError as exc:
        db.rollback()
        raise ValueError("Workspace slug already exists.") from exc


def get_tenant_by_id(db: Session, tenant_id: int) -> Tenant | None:
    return db.query(Tenant).filter(Tenant.id == tenant_id).first()


def get_tenant_by_slug(db: Session, slug: str) -> Tenant | None:
    return db.query(Tenant).filter(Tenant.slug == slug).first()


def resolve_tenant(db: Session, tenant_hint: str | int | None) -> Tenant | None:
    if tenant_hint is None:
        return None
    tenant_value = str(tenant_hint).strip()
    if not tenant_value:
        return None
    if tenant_value.isdigit():
        return get_tenant_by_id(db, int(tenant_value))
    return get_tenant_by_slug(db, tenant_value)


def list_active_tenant_ids(db: Session) -> list[int]:
    rows = (
        db.query(Tenant.id)
        .filter(Tenant.is_active.is_(True), Tenant.deleted_at.is_(None))
        .order_by(Tenant.id)
        .all()
    )
    return [row[0] for row in rows]
