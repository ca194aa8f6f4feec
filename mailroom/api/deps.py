"""Shared FastAPI dependencies."""
from __future__ import annotations

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from mailroom.db.session import get_db
from mailroom.services.tenants import get_tenant


def current_tenant_id(
    x_tenant_id: int = Header(..., alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> int:
    """Tenant context for tenant-scoped routes. Authentication happens upstream."""

    get_tenant(db, x_tenant_id)
    return x_tenant_id
