"""Apply delivery events to the ledger and keep analytics in step.

Each event stamps one timestamp column on the delivery record. The stamp is
written with ``UPDATE ... WHERE <column> IS NULL``, so replaying an event
changes nothing: no second counter bump, no second suppression entry, no
second automation run. Status is never stored independently; it is derived
from the stamped columns, which makes it monotonic.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from mailroom.core.errors import ConstraintViolation, NotFound
from mailroom.db import models
from mailroom.db.session import atomic
from mailroom.services import analytics, automation, notifications
from mailroom.services.campaigns import stage_completion
from mailroom.services.isolation import ensure_same_tenant
from mailroom.services.suppression import stage_suppression
from mailroom.utils.datetime import as_utc, utcnow
from mailroom.utils.logger import logger

EVENT_TYPES = tuple(analytics.EVENT_COLUMNS)
SOFT_BOUNCE_TYPES = ("soft", "transient", "undetermined")

_STATUS_PRECEDENCE = (
    ("complained_at", "complained"),
    ("bounced_at", "bounced"),
    ("failed_at", "failed"),
    ("clicked_at", "clicked"),
    ("opened_at", "opened"),
    ("sent_at", "sent"),
    ("delivered_at", "sent"),
)


@dataclass
class OutcomeResult:
    record_id: int
    event_type: str
    applied: bool
    status: str


def derive_status(record: models.DeliveryRecord) -> str:
    for column, status in _STATUS_PRECEDENCE:
        if getattr(record, column) is not None:
            return status
    return "pending"


def is_hard_bounce(bounce_type: str | None) -> bool:
    return (bounce_type or "hard").lower() not in SOFT_BOUNCE_TYPES


def find_record(db: Session, campaign_id: int, subscriber_id: int) -> models.DeliveryRecord:
    record = db.execute(
        select(models.DeliveryRecord).where(
            models.DeliveryRecord.campaign_id == campaign_id,
            models.DeliveryRecord.subscriber_id == subscriber_id,
        )
    ).scalar_one_or_none()
    if record is None:
        raise NotFound(f"No delivery record for campaign {campaign_id} and subscriber {subscriber_id}")
    return record


def find_record_by_message_id(db: Session, message_id: str) -> models.DeliveryRecord | None:
    return db.execute(
        select(models.DeliveryRecord).where(models.DeliveryRecord.message_id == message_id).limit(1)
    ).scalar_one_or_none()


def _stamp(
    db: Session,
    record: models.DeliveryRecord,
    column: str,
    occurred_at: datetime,
    extra: dict,
) -> bool:
    stamp_column = getattr(models.DeliveryRecord, column)
    result = db.execute(
        update(models.DeliveryRecord)
        .where(models.DeliveryRecord.id == record.id, stamp_column.is_(None))
        .values({column: occurred_at, **extra})
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _subscriber_side_effects(
    db: Session, record: models.DeliveryRecord, event_type: str, bounce_type: str | None
) -> None:
    subscriber = db.get(models.Subscriber, record.subscriber_id)
    campaign = db.get(models.Campaign, record.campaign_id)
    if subscriber is None or campaign is None:
        return

    if event_type == "bounced":
        if not is_hard_bounce(bounce_type):
            return
        if subscriber.status != "complained":
            subscriber.status = "bounced"
        stage_suppression(db, record.tenant_id, email=subscriber.email, reason="hard_bounce")
        notifications.stage_notification(
            db, record.tenant_id, "bounce", f'Hard bounce from {subscriber.email} on campaign "{campaign.name}".'
        )
    elif event_type == "complained":
        subscriber.status = "complained"
        stage_suppression(db, record.tenant_id, email=subscriber.email, reason="complaint")
        notifications.stage_notification(
            db, record.tenant_id, "complaint", f'{subscriber.email} marked campaign "{campaign.name}" as spam.'
        )
    elif event_type == "unsubscribed":
        if subscriber.status == "active":
            subscriber.status = "unsubscribed"


def stage_delivery_event(
    db: Session,
    record: models.DeliveryRecord,
    event_type: str,
    *,
    occurred_at: datetime | None = None,
    bounce_type: str | None = None,
    message_id: str | None = None,
    url: str | None = None,
) -> OutcomeResult:
    """Apply one event inside the caller's transaction."""
    if event_type not in analytics.EVENT_COLUMNS:
        raise ConstraintViolation(f"Unknown delivery event {event_type!r}")
    column, counter = analytics.EVENT_COLUMNS[event_type]

    extra: dict = {}
    if event_type == "bounced":
        extra["bounce_type"] = (bounce_type or "hard").lower()
    if message_id and event_type == "sent":
        extra["message_id"] = message_id

    applied = _stamp(db, record, column, as_utc(occurred_at) or utcnow(), extra)
    if not applied:
        return OutcomeResult(record.id, event_type, False, record.status)

    db.refresh(record)
    status = derive_status(record)
    if status != record.status:
        record.status = status
    analytics.increment(db, record.campaign_id, counter)
    _subscriber_side_effects(db, record, event_type, bounce_type)
    db.flush()

    campaign = db.get(models.Campaign, record.campaign_id)
    if campaign is not None:
        stage_completion(db, campaign)

    if event_type == "opened":
        automation.fire(
            db,
            automation.TriggerEvent(
                trigger="email_opened",
                tenant_id=record.tenant_id,
                subscriber_id=record.subscriber_id,
                key=f"email_opened:{record.id}",
                campaign_id=record.campaign_id,
            ),
        )
    elif event_type == "clicked":
        automation.fire(
            db,
            automation.TriggerEvent(
                trigger="link_clicked",
                tenant_id=record.tenant_id,
                subscriber_id=record.subscriber_id,
                key=f"link_clicked:{record.id}",
                campaign_id=record.campaign_id,
                url=url,
            ),
        )
    return OutcomeResult(record.id, event_type, True, status)


def apply_delivery_event(
    db: Session,
    *,
    campaign_id: int,
    subscriber_id: int,
    event_type: str,
    occurred_at: datetime | None = None,
    tenant_id: int | None = None,
    bounce_type: str | None = None,
    message_id: str | None = None,
    url: str | None = None,
) -> OutcomeResult:
    """Apply a delivery event keyed by (campaign, subscriber) in one transaction."""
    record = find_record(db, campaign_id, subscriber_id)
    if tenant_id is not None:
        ensure_same_tenant(tenant_id, record.tenant_id, "Delivery record")
    with atomic(db):
        result = stage_delivery_event(
            db,
            record,
            event_type,
            occurred_at=occurred_at,
            bounce_type=bounce_type,
            message_id=message_id,
            url=url,
        )
    if result.applied:
        logger.info(
            "Applied %s to delivery record %s (status=%s)", event_type, result.record_id, result.status
        )
    return result


def apply_provider_event(
    db: Session,
    *,
    message_id: str,
    event_type: str,
    occurred_at: datetime | None = None,
    bounce_type: str | None = None,
) -> OutcomeResult | None:
    """Apply an event reported by the mail provider against its message id."""
    record = find_record_by_message_id(db, message_id)
    if record is None:
        logger.warning("Provider event %s for unknown message id %s", event_type, message_id)
        return None
    return apply_delivery_event(
        db,
        campaign_id=record.campaign_id,
        subscriber_id=record.subscriber_id,
        event_type=event_type,
        occurred_at=occurred_at,
        bounce_type=bounce_type,
    )
