"""Tenant management endpoints."""
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from mailroom.db import models
from mailroom.db.session import get_db
from mailroom.services import tenants as tenant_service

router = APIRouter(prefix="/tenants", tags=["tenants"])


class TenantCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    name: str
    company_name: str | None = None


class TenantUpdate(BaseModel):
    email: EmailStr | None = None
    name: str | None = None
    company_name: str | None = None
    has_paid: bool | None = None


class TenantResponse(BaseModel):
    id: int
    email: str
    name: str
    company_name: str | None = None
    role: str
    is_verified: bool
    ses_verified: bool
    has_paid: bool
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


@router.post("/", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
def create_tenant(payload: TenantCreate, db: Session = Depends(get_db)) -> TenantResponse:
    """Create a tenant."""

    tenant = tenant_service.create_tenant(
        db,
        email=payload.email,
        password=payload.password,
        name=payload.name,
        company_name=payload.company_name,
    )
    return TenantResponse.model_validate(tenant)


@router.get("/", response_model=list[TenantResponse])
def list_tenants(db: Session = Depends(get_db)) -> list[TenantResponse]:
    """List all tenants."""

    tenants = db.execute(select(models.Tenant).order_by(models.Tenant.created_at.desc())).scalars()
    return [TenantResponse.model_validate(t) for t in tenants]


@router.get("/{tenant_id}", response_model=TenantResponse)
def get_tenant(tenant_id: int, db: Session = Depends(get_db)) -> TenantResponse:
    """Fetch a single tenant."""

    return TenantResponse.model_validate(tenant_service.get_tenant(db, tenant_id))


@router.patch("/{tenant_id}", response_model=TenantResponse)
def update_tenant(tenant_id: int, payload: TenantUpdate, db: Session = Depends(get_db)) -> TenantResponse:
    """Update tenant attributes."""

    tenant = tenant_service.update_tenant(db, tenant_id, **payload.model_dump(exclude_unset=True))
    return TenantResponse.model_validate(tenant)


@router.delete("/{tenant_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def delete_tenant(tenant_id: int, db: Session = Depends(get_db)) -> Response:
    """Delete a tenant and everything it owns."""

    tenant_service.delete_tenant(db, tenant_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
