"""Tenant principal lifecycle."""
from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mailroom.core.errors import ConstraintViolation, NotFound
from mailroom.core.security import get_password_hash
from mailroom.db import models
from mailroom.db.session import atomic
from mailroom.utils.logger import logger


def get_tenant(db: Session, tenant_id: int) -> models.Tenant:
    tenant = db.get(models.Tenant, tenant_id)
    if tenant is None:
        raise NotFound(f"Tenant {tenant_id} not found")
    return tenant


def create_tenant(
    db: Session,
    *,
    email: str,
    password: str,
    name: str,
    company_name: str | None = None,
    role: str = "user",
) -> models.Tenant:
    email = email.strip().lower()
    existing = db.execute(select(models.Tenant.id).where(models.Tenant.email == email)).first()
    if existing:
        raise ConstraintViolation(f"A tenant with email {email} already exists")

    tenant = models.Tenant(
        email=email,
        name=name,
        company_name=company_name,
        password_hash=get_password_hash(password),
        role=role,
    )
    try:
        with atomic(db):
            db.add(tenant)
    except IntegrityError as exc:
        raise ConstraintViolation(f"A tenant with email {email} already exists") from exc
    db.refresh(tenant)
    logger.info("Created tenant %s", tenant.id)
    return tenant


def update_tenant(db: Session, tenant_id: int, **changes) -> models.Tenant:
    tenant = get_tenant(db, tenant_id)
    if changes.get("email") is not None:
        changes["email"] = changes["email"].strip().lower()
    for field in ("email", "name", "company_name", "is_verified", "has_paid"):
        value = changes.get(field)
        if value is not None:
            setattr(tenant, field, value)
    try:
        with atomic(db):
            db.add(tenant)
    except IntegrityError as exc:
        raise ConstraintViolation("A tenant with that email already exists") from exc
    db.refresh(tenant)
    return tenant


def mark_sender_verified(db: Session, tenant_id: int, verified: bool = True) -> models.Tenant:
    tenant = get_tenant(db, tenant_id)
    with atomic(db):
        tenant.ses_verified = verified
    db.refresh(tenant)
    return tenant


def delete_tenant(db: Session, tenant_id: int) -> None:
    """Delete a tenant; the database cascades every owned row."""

    get_tenant(db, tenant_id)
    with atomic(db):
        db.execute(delete(models.Tenant).where(models.Tenant.id == tenant_id))
    db.expire_all()
    logger.info("Deleted tenant %s and all owned rows", tenant_id)
