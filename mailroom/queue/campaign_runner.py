"""Utilities to dispatch campaign emails to the queue."""
from __future__ import annotations

from datetime import datetime

from mailroom.core.errors import InvalidTransition, MailroomError, NotFound
from mailroom.db import models
from mailroom.db.session import session_scope
from mailroom.queue.worker import _get_queue, enqueue_delivery_job
from mailroom.services import campaigns
from mailroom.utils.logger import logger


def dispatch_pending(campaign_id: int) -> int:
    """Enqueue one delivery job per pending record of a sending campaign."""

    with session_scope() as db:
        campaign = db.get(models.Campaign, campaign_id)
        if campaign is None:
            raise NotFound(f"Campaign {campaign_id} not found")
        if campaign.status != "sending":
            return 0
        record_ids = [record.id for record in campaigns.pending_records(db, campaign)]

    for record_id in record_ids:
        enqueue_delivery_job(record_id)
    logger.info("Campaign %s enqueued %s messages", campaign_id, len(record_ids))
    return len(record_ids)


def run_campaign(campaign_id: int, now: datetime | None = None) -> int:
    """Start a due campaign (fan-out) and queue its deliveries."""

    with session_scope() as db:
        campaign = db.get(models.Campaign, campaign_id)
        if campaign is None:
            raise NotFound(f"Campaign {campaign_id} not found")
        _, result = campaigns.start_sending(db, campaign.tenant_id, campaign.id, now=now)
        logger.info("Campaign %s started with %s new recipients", campaign_id, result.enrolled)
    return dispatch_pending(campaign_id)


def _run_campaign_job(campaign_id: int) -> int:
    """RQ-friendly job to process a campaign."""

    try:
        return run_campaign(campaign_id)
    except InvalidTransition as exc:
        logger.info("Campaign %s not started: %s", campaign_id, exc.message)
        return 0


def run_due_campaigns(now: datetime | None = None) -> dict[int, int]:
    """Start every scheduled campaign whose send time has passed."""

    with session_scope() as db:
        due = [(campaign.id, campaign.tenant_id) for campaign in campaigns.due_campaigns(db, now)]

    started: dict[int, int] = {}
    for campaign_id, tenant_id in due:
        try:
            started[campaign_id] = run_campaign(campaign_id, now=now)
        except InvalidTransition as exc:
            # Paused or cancelled between the scan and the start.
            logger.info("Skipping campaign %s: %s", campaign_id, exc.message)
        except MailroomError as exc:
            logger.error("Campaign %s could not start: %s", campaign_id, exc.message)
            with session_scope() as db:
                campaigns.fail_campaign(db, tenant_id, campaign_id, exc.message)
    return started


def enqueue_campaign_run(campaign_id: int):
    """Queue a campaign run on the default RQ queue."""

    queue = _get_queue()
    job = queue.enqueue(_run_campaign_job, kwargs={"campaign_id": campaign_id})
    logger.info("Enqueued campaign %s with job id %s", campaign_id, job.id)
    return job
