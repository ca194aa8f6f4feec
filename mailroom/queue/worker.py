"""RQ jobs that deliver outbound emails via SES."""
from __future__ import annotations

import os
import sys
from typing import Any

import redis
from rq import Queue, Worker

from mailroom.core.config import settings
from mailroom.db import models
from mailroom.db.session import session_scope
from mailroom.services import outcomes, tracking
from mailroom.services.ses import SESSendError, SESService
from mailroom.services.template_engine import render_string, render_template
from mailroom.utils.logger import logger

_email_queue: Any | None = None


def _get_queue() -> Any:
    global _email_queue
    if _email_queue is None:
        connection = redis.Redis.from_url(settings.redis_url)
        _email_queue = Queue(settings.rq_queue_name, connection=connection)
    return _email_queue


def process_email_job(
    *,
    subject: str,
    recipient: str,
    html_body: str,
    text_body: str | None = None,
    sender: str | None = None,
    sender_name: str | None = None,
    reply_to: str | None = None,
) -> str:
    """Background job that sends one standalone email."""

    service = SESService()
    message_id = service.send_email(
        subject=subject,
        recipient=recipient,
        html_body=html_body,
        text_body=text_body,
        sender=sender,
        sender_name=sender_name,
        reply_to=reply_to,
    )
    logger.info("Processed queued email to %s", recipient)
    return message_id


def enqueue_email_job(*, subject: str, recipient: str, html_body: str, text_body: str | None = None, **extra):
    """Helper for API routes to enqueue jobs."""

    queue = _get_queue()
    return queue.enqueue(
        process_email_job,
        kwargs={"subject": subject, "recipient": recipient, "html_body": html_body, "text_body": text_body, **extra},
    )


def process_delivery_job(record_id: int) -> str | None:
    """Render and send one campaign email, then record ``sent`` or ``failed``."""

    with session_scope() as db:
        record = db.get(models.DeliveryRecord, record_id)
        if record is None:
            logger.warning("Delivery record %s vanished before sending", record_id)
            return None
        if record.status != "pending":
            return None
        campaign = record.campaign
        subscriber = record.subscriber
        if campaign.status != "sending":
            logger.info("Campaign %s is %s; leaving record %s pending", campaign.id, campaign.status, record_id)
            return None
        if subscriber.status != "active" or campaign.template is None:
            logger.warning("Record %s cannot be sent (subscriber %s, template missing=%s)",
                           record_id, subscriber.status, campaign.template is None)
            outcomes.stage_delivery_event(db, record, "failed")
            return None

        rendered = tracking.render_for_subscriber(campaign, campaign.template, subscriber)
        sender, sender_name = campaign.from_email or settings.default_sender_email, campaign.from_name
        try:
            message_id = SESService().send_email(
                subject=rendered.subject,
                recipient=subscriber.email,
                html_body=rendered.html,
                text_body=rendered.text,
                sender=sender,
                sender_name=sender_name,
                reply_to=campaign.reply_to,
            )
        except SESSendError:
            outcomes.stage_delivery_event(db, record, "failed")
            return None
        outcomes.stage_delivery_event(db, record, "sent", message_id=message_id)
        return message_id


def enqueue_delivery_job(record_id: int):
    queue = _get_queue()
    return queue.enqueue(process_delivery_job, kwargs={"record_id": record_id})


def enqueue_confirmation_email(*, recipient: str, first_name: str | None, token: str):
    confirm_url = f"{tracking.tracking_base()}/public/confirm/{token}"
    context = {"first_name": first_name, "confirm_url": confirm_url, "ttl_days": settings.confirmation_token_ttl_days}
    return enqueue_email_job(
        subject="Please confirm your subscription",
        recipient=recipient,
        html_body=render_template("confirmation.html", **context),
        text_body=render_template("confirmation.txt", **context),
    )


def process_template_email(*, tenant_id: int, template_id: int, subscriber_id: int) -> str | None:
    """Automation ``send_email`` action: one template to one subscriber, outside any campaign."""

    with session_scope() as db:
        template = db.get(models.Template, template_id)
        subscriber = db.get(models.Subscriber, subscriber_id)
        if template is None or subscriber is None or {template.tenant_id, subscriber.tenant_id} != {tenant_id}:
            logger.warning("Skipping automation email: template %s / subscriber %s unavailable", template_id, subscriber_id)
            return None
        context = {
            "first_name": subscriber.first_name or "",
            "last_name": subscriber.last_name or "",
            "email": subscriber.email,
            "campaign_name": template.name,
            "unsubscribe_url": tracking.unsubscribe_url(subscriber),
            "web_version_url": "",
        }
        subject = render_string(template.subject, html=False, **context)
        html_body = render_string(template.html_content, **context)
        text_body = render_string(template.text_content, html=False, **context) if template.text_content else None
        recipient = subscriber.email

    return process_email_job(subject=subject, recipient=recipient, html_body=html_body, text_body=text_body)


def enqueue_template_email(*, tenant_id: int, template_id: int, subscriber_id: int):
    queue = _get_queue()
    return queue.enqueue(
        process_template_email,
        kwargs={"tenant_id": tenant_id, "template_id": template_id, "subscriber_id": subscriber_id},
    )


def run_worker() -> None:
    """Entry point called by `python -m mailroom.queue.worker`."""

    if (
        settings.environment == "development"
        and sys.platform == "darwin"
        and not os.environ.get("OBJC_DISABLE_INITIALIZE_FORK_SAFETY")
    ):
        logger.warning(
            "OBJC_DISABLE_INITIALIZE_FORK_SAFETY=YES is recommended on macOS to avoid fork-related crashes with RQ workers. "
            "Applying it for this process."
        )
        os.environ["OBJC_DISABLE_INITIALIZE_FORK_SAFETY"] = "YES"

    queue = _get_queue()
    worker = Worker([queue], connection=queue.connection)
    worker.work(with_scheduler=True)


if __name__ == "__main__":  # pragma: no cover - manual execution
    run_worker()
