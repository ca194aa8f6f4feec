"""Deliverability dashboard endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from mailroom.api.deps import current_tenant_id
from mailroom.db.session import get_db
from mailroom.services import dashboard

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


class Kpi(BaseModel):
    title: str
    value: str
    change: str
    trend: str


class DomainPerformance(BaseModel):
    name: str
    deliveryRate: float
    complaintRate: float
    spamRate: float


class ComplianceItem(BaseModel):
    id: str
    name: str
    status: str
    details: str
    fixLink: str


class DashboardOverview(BaseModel):
    kpis: list[Kpi]
    gmailSpamRate: float
    domainPerformance: list[DomainPerformance]
    complianceChecklist: list[ComplianceItem]


@router.get("/", response_model=DashboardOverview)
def overview(tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)) -> DashboardOverview:
    """Everything the dashboard home page needs in one call."""

    return DashboardOverview(**dashboard.overview(db, tenant_id))


@router.get("/kpis", response_model=list[Kpi])
def kpis(
    window: int | None = Query(default=None, ge=1, le=100),
    tenant_id: int = Depends(current_tenant_id),
    db: Session = Depends(get_db),
) -> list[Kpi]:
    return [Kpi(**item) for item in dashboard.kpis(db, tenant_id, window)]


@router.get("/gmail-spam-rate", response_model=dict)
def gmail_spam_rate(tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)) -> dict:
    return {"gmailSpamRate": dashboard.gmail_spam_rate(db, tenant_id)}


@router.get("/domain-performance", response_model=list[DomainPerformance])
def domain_performance(
    tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> list[DomainPerformance]:
    return [DomainPerformance(**item) for item in dashboard.domain_performance(db, tenant_id)]


@router.get("/compliance", response_model=list[ComplianceItem])
def compliance(tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)) -> list[ComplianceItem]:
    return [ComplianceItem(**item) for item in dashboard.compliance(db, tenant_id)]
