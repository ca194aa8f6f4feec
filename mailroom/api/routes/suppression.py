"""Suppression list management endpoints."""
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, ConfigDict, EmailStr, model_validator
from sqlalchemy.orm import Session

from mailroom.api.deps import current_tenant_id
from mailroom.db.session import get_db
from mailroom.services import suppression as suppression_service

router = APIRouter(prefix="/suppression", tags=["suppression"])


class SuppressionCreate(BaseModel):
    email: EmailStr | None = None
    domain: str | None = None
    reason: str = "manual"

    @model_validator(mode="after")
    def email_or_domain(self) -> "SuppressionCreate":
        if not self.email and not self.domain:
            raise ValueError("email or domain is required")
        if self.domain and "." not in self.domain:
            raise ValueError("domain must be valid")
        return self


class SuppressionResponse(BaseModel):
    id: int
    tenant_id: int
    email: str | None = None
    domain: str | None = None
    reason: str
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


@router.post("/", response_model=SuppressionResponse, status_code=status.HTTP_201_CREATED)
def add_suppression(
    payload: SuppressionCreate, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> SuppressionResponse:
    """Suppress an address or a whole domain (subdomains included)."""

    entry = suppression_service.add_suppression(
        db, tenant_id, email=payload.email, domain=payload.domain, reason=payload.reason
    )
    return SuppressionResponse.model_validate(entry)


@router.get("/", response_model=list[SuppressionResponse])
def list_suppression(
    tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> list[SuppressionResponse]:
    return [SuppressionResponse.model_validate(e) for e in suppression_service.list_suppression(db, tenant_id)]


@router.get("/check", response_model=dict)
def check_suppression(email: str, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)) -> dict:
    return {"email": email, "suppressed": suppression_service.is_suppressed(db, tenant_id, email)}


@router.delete("/{entry_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def delete_suppression(
    entry_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> Response:
    """Remove a suppression entry."""

    suppression_service.remove_suppression(db, tenant_id, entry_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
