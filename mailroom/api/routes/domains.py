"""Sender domain verification endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from mailroom.api.deps import current_tenant_id
from mailroom.db.session import get_db
from mailroom.services.ses import ses_service
from mailroom.services.tenants import get_tenant, mark_sender_verified

router = APIRouter(prefix="/domains", tags=["domains"])


class DomainStatusResponse(BaseModel):
    tenant_id: int
    ses_verified: bool


class DomainVerificationRequest(BaseModel):
    domain: str

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, value: str) -> str:
        value = value.strip().lower().rstrip(".")
        if "." not in value:
            raise ValueError("domain must be valid")
        return value


class DomainVerificationResponse(BaseModel):
    domain: str
    txt_name: str
    txt_value: str


class DomainCheckRequest(BaseModel):
    domain: str


@router.get("/status", response_model=DomainStatusResponse)
def get_domain_status(tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)) -> DomainStatusResponse:
    """Return SES verification status for the tenant."""

    tenant = get_tenant(db, tenant_id)
    return DomainStatusResponse(tenant_id=tenant.id, ses_verified=tenant.ses_verified)


@router.post("/request-verification", response_model=DomainVerificationResponse)
def request_domain_verification(
    payload: DomainVerificationRequest, tenant_id: int = Depends(current_tenant_id)
) -> DomainVerificationResponse:
    """Ask SES for a verification token and return the TXT record to publish."""

    token = ses_service.verify_domain_identity(payload.domain)
    return DomainVerificationResponse(domain=payload.domain, txt_name=f"_amazonses.{payload.domain}", txt_value=token)


@router.post("/check", response_model=DomainStatusResponse)
def check_domain(
    payload: DomainCheckRequest, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> DomainStatusResponse:
    """Poll SES and record the result on the tenant."""

    verified = ses_service.identity_verified(payload.domain)
    tenant = mark_sender_verified(db, tenant_id, verified)
    return DomainStatusResponse(tenant_id=tenant.id, ses_verified=tenant.ses_verified)


@router.patch("/mark-verified", response_model=DomainStatusResponse)
def mark_domain_verified(tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)) -> DomainStatusResponse:
    """Mark the tenant's SES configuration as verified by hand."""

    tenant = mark_sender_verified(db, tenant_id)
    return DomainStatusResponse(tenant_id=tenant.id, ses_verified=tenant.ses_verified)
