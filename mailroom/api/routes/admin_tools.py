"""Operator endpoints: manual campaign runs and analytics repair."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from mailroom.db.session import get_db
from mailroom.queue.campaign_runner import enqueue_campaign_run, run_campaign, run_due_campaigns
from mailroom.services.analytics import repair_drifted_analytics

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/run-campaign/{campaign_id}")
def run_campaign_now(campaign_id: int) -> dict[str, int]:
    """Start a scheduled campaign synchronously and queue its deliveries."""

    return {"campaign_id": campaign_id, "enqueued": run_campaign(campaign_id)}


@router.post("/enqueue-campaign/{campaign_id}")
def enqueue_campaign(campaign_id: int) -> dict[str, str]:
    job = enqueue_campaign_run(campaign_id)
    return {"job_id": job.id}


@router.post("/run-due")
def run_due() -> dict[str, dict[int, int]]:
    """Start every scheduled campaign whose time has come."""

    return {"started": run_due_campaigns()}


@router.post("/repair-analytics")
def repair_analytics(db: Session = Depends(get_db)) -> dict[str, list[int]]:
    """Recompute counters for every started campaign and fix any that drifted."""

    return {"repaired": repair_drifted_analytics(db)}
