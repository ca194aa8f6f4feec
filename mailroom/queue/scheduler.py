"""Periodic scan for due campaigns using rq-scheduler."""
from __future__ import annotations

import redis
from rq_scheduler import Scheduler

from mailroom.core.config import settings
from mailroom.queue.campaign_runner import run_due_campaigns
from mailroom.utils.datetime import utcnow
from mailroom.utils.logger import configure_logging, logger

DUE_CAMPAIGNS_JOB_ID = "mailroom-run-due-campaigns"


def get_scheduler() -> Scheduler:
    connection = redis.Redis.from_url(settings.redis_url)
    return Scheduler(settings.rq_queue_name, connection=connection)


def schedule_due_campaign_scan(scheduler: Scheduler | None = None):
    """Register the recurring ``run_due_campaigns`` job, replacing any previous one."""

    scheduler = scheduler or get_scheduler()
    if DUE_CAMPAIGNS_JOB_ID in scheduler:
        scheduler.cancel(DUE_CAMPAIGNS_JOB_ID)
    job = scheduler.schedule(
        scheduled_time=utcnow(),
        func=run_due_campaigns,
        interval=settings.due_campaign_poll_seconds,
        repeat=None,
        id=DUE_CAMPAIGNS_JOB_ID,
    )
    logger.info("Scheduled due-campaign scan every %ss", settings.due_campaign_poll_seconds)
    return job


def run() -> None:
    configure_logging()
    scheduler = get_scheduler()
    schedule_due_campaign_scan(scheduler)
    scheduler.run()


if __name__ == "__main__":  # pragma: no cover - manual execution
    run()
