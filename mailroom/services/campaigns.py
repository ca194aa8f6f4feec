"""Campaign composition and lifecycle."""
from __future__ import annotations

from datetime import datetime
from typing import Iterable

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from mailroom.core.config import settings
from mailroom.core.errors import InvalidTransition
from mailroom.db import models
from mailroom.db.session import atomic
from mailroom.services import analytics, fanout, notifications
from mailroom.services.isolation import get_owned, resolve_reference, resolve_references
from mailroom.services.lifecycle import CAMPAIGN_MACHINE, assert_editable
from mailroom.utils.datetime import as_utc, utcnow
from mailroom.utils.logger import logger

_UNSET = object()


def get_campaign(db: Session, tenant_id: int, campaign_id: int) -> models.Campaign:
    return get_owned(db, models.Campaign, tenant_id, campaign_id, "Campaign")


def list_campaigns(db: Session, tenant_id: int, *, status: str | None = None) -> list[models.Campaign]:
    query = select(models.Campaign).where(models.Campaign.tenant_id == tenant_id)
    if status is not None:
        query = query.where(models.Campaign.status == status)
    return list(db.execute(query.order_by(models.Campaign.created_at.desc(), models.Campaign.id.desc())).scalars())


def campaign_list_ids(db: Session, campaign: models.Campaign) -> list[int]:
    return list(
        db.execute(
            select(models.CampaignList.list_id)
            .where(
                models.CampaignList.campaign_id == campaign.id,
                models.CampaignList.tenant_id == campaign.tenant_id,
            )
            .order_by(models.CampaignList.list_id)
        ).scalars()
    )


def _replace_lists(db: Session, campaign: models.Campaign, lists: Iterable[models.MailingList]) -> None:
    db.execute(
        delete(models.CampaignList).where(
            models.CampaignList.campaign_id == campaign.id,
            models.CampaignList.tenant_id == campaign.tenant_id,
        )
    )
    for mailing_list in lists:
        db.add(models.CampaignList(tenant_id=campaign.tenant_id, campaign_id=campaign.id, list_id=mailing_list.id))


def create_campaign(
    db: Session,
    tenant_id: int,
    *,
    name: str,
    subject: str,
    template_id: int | None = None,
    from_name: str | None = None,
    from_email: str | None = None,
    reply_to: str | None = None,
    list_ids: Iterable[int] = (),
) -> models.Campaign:
    if template_id is not None:
        resolve_reference(db, models.Template, tenant_id, template_id, "Template")
    lists = resolve_references(db, models.MailingList, tenant_id, list_ids, "List")

    campaign = models.Campaign(
        tenant_id=tenant_id,
        name=name,
        subject=subject,
        template_id=template_id,
        from_name=from_name,
        from_email=from_email,
        reply_to=reply_to,
        status="draft",
    )
    with atomic(db):
        db.add(campaign)
        db.flush()
        _replace_lists(db, campaign, lists)
        analytics.ensure_row(db, campaign)
    db.refresh(campaign)
    logger.info("Tenant %s created campaign %s", tenant_id, campaign.id)
    return campaign


def update_campaign(
    db: Session,
    tenant_id: int,
    campaign_id: int,
    *,
    name: str | None = None,
    subject: str | None = None,
    template_id=_UNSET,
    from_name: str | None = None,
    from_email: str | None = None,
    reply_to: str | None = None,
    list_ids: Iterable[int] | None = None,
) -> models.Campaign:
    campaign = get_campaign(db, tenant_id, campaign_id)
    assert_editable(campaign.status)
    if template_id is not _UNSET and template_id is not None:
        resolve_reference(db, models.Template, tenant_id, template_id, "Template")
    lists = None
    if list_ids is not None:
        lists = resolve_references(db, models.MailingList, tenant_id, list_ids, "List")

    with atomic(db):
        for field, value in (
            ("name", name),
            ("subject", subject),
            ("from_name", from_name),
            ("from_email", from_email),
            ("reply_to", reply_to),
        ):
            if value is not None:
                setattr(campaign, field, value)
        if template_id is not _UNSET:
            campaign.template_id = template_id
        if lists is not None:
            _replace_lists(db, campaign, lists)
        db.add(campaign)
    db.refresh(campaign)
    return campaign


def delete_campaign(db: Session, tenant_id: int, campaign_id: int) -> None:
    campaign = get_campaign(db, tenant_id, campaign_id)
    if campaign.status == "sending":
        raise InvalidTransition("Pause the campaign before deleting it")
    with atomic(db):
        db.delete(campaign)


def resolve_sender(campaign: models.Campaign) -> tuple[str, str]:
    return (
        campaign.from_email or settings.default_sender_email,
        campaign.from_name or settings.default_sender_name,
    )


def pending_count(db: Session, campaign: models.Campaign) -> int:
    return db.execute(
        select(func.count(models.DeliveryRecord.id)).where(
            models.DeliveryRecord.campaign_id == campaign.id,
            models.DeliveryRecord.tenant_id == campaign.tenant_id,
            models.DeliveryRecord.status == "pending",
        )
    ).scalar_one()


def record_count(db: Session, campaign: models.Campaign) -> int:
    return db.execute(
        select(func.count(models.DeliveryRecord.id)).where(
            models.DeliveryRecord.campaign_id == campaign.id,
            models.DeliveryRecord.tenant_id == campaign.tenant_id,
        )
    ).scalar_one()


def _move(campaign: models.Campaign, target: str) -> None:
    CAMPAIGN_MACHINE.assert_transition(campaign.status, target)
    logger.info("Campaign %s: %s -> %s", campaign.id, campaign.status, target)
    campaign.status = target


def schedule_campaign(
    db: Session, tenant_id: int, campaign_id: int, scheduled_at: datetime | None = None
) -> models.Campaign:
    campaign = get_campaign(db, tenant_id, campaign_id)
    CAMPAIGN_MACHINE.assert_transition(campaign.status, "scheduled")
    if campaign.status == "draft":
        if not campaign_list_ids(db, campaign):
            raise InvalidTransition("Campaign needs at least one target list before it can be scheduled")
        sender, _ = resolve_sender(campaign)
        if not sender:
            raise InvalidTransition("Campaign has no sender address")
    with atomic(db):
        _move(campaign, "scheduled")
        campaign.scheduled_at = as_utc(scheduled_at) or utcnow()
    db.refresh(campaign)
    return campaign


def cancel_schedule(db: Session, tenant_id: int, campaign_id: int) -> models.Campaign:
    campaign = get_campaign(db, tenant_id, campaign_id)
    with atomic(db):
        _move(campaign, "draft")
        campaign.scheduled_at = None
    db.refresh(campaign)
    return campaign


def stage_completion(db: Session, campaign: models.Campaign) -> bool:
    """Move a ``sending`` campaign to ``sent`` once nothing is pending."""
    if campaign.status != "sending" or pending_count(db, campaign):
        return False
    _move(campaign, "sent")
    campaign.sent_at = utcnow()
    snapshot = analytics.AnalyticsSnapshot.from_row(analytics.ensure_row(db, campaign))
    notifications.stage_notification(
        db,
        campaign.tenant_id,
        "campaign_sent",
        f'Campaign "{campaign.name}" finished sending to {snapshot.sent} recipients.',
    )
    return True


def start_sending(
    db: Session, tenant_id: int, campaign_id: int, now: datetime | None = None
) -> tuple[models.Campaign, fanout.FanOutResult]:
    """``scheduled -> sending``: runs fan-out in the same transaction."""
    campaign = get_campaign(db, tenant_id, campaign_id)
    CAMPAIGN_MACHINE.assert_transition(campaign.status, "sending")
    if campaign.status == "scheduled":
        now = as_utc(now) or utcnow()
        scheduled_at = as_utc(campaign.scheduled_at)
        if scheduled_at is not None and scheduled_at > now:
            raise InvalidTransition(f"Campaign {campaign.id} is not due until {scheduled_at.isoformat()}")
    with atomic(db):
        _move(campaign, "sending")
        result = fanout.fan_out(db, campaign)
        db.flush()
        stage_completion(db, campaign)
    db.refresh(campaign)
    return campaign, result


def fan_out_campaign(db: Session, tenant_id: int, campaign_id: int) -> fanout.FanOutResult:
    """Re-run fan-out for a campaign that is already sending."""
    campaign = get_campaign(db, tenant_id, campaign_id)
    if campaign.status != "sending":
        raise InvalidTransition(f"Fan-out needs a sending campaign, not {campaign.status}")
    with atomic(db):
        result = fanout.fan_out(db, campaign)
    return result


def pause_campaign(db: Session, tenant_id: int, campaign_id: int) -> models.Campaign:
    campaign = get_campaign(db, tenant_id, campaign_id)
    with atomic(db):
        _move(campaign, "paused")
    db.refresh(campaign)
    return campaign


def resume_campaign(db: Session, tenant_id: int, campaign_id: int) -> models.Campaign:
    campaign = get_campaign(db, tenant_id, campaign_id)
    if campaign.status != "paused":
        raise InvalidTransition(f"Only paused campaigns can be resumed, not {campaign.status}")
    target = "sending" if record_count(db, campaign) else "scheduled"
    with atomic(db):
        _move(campaign, target)
        if target == "scheduled" and campaign.scheduled_at is None:
            campaign.scheduled_at = utcnow()
        if target == "sending":
            stage_completion(db, campaign)
    db.refresh(campaign)
    return campaign


def complete_campaign(db: Session, tenant_id: int, campaign_id: int) -> models.Campaign:
    campaign = get_campaign(db, tenant_id, campaign_id)
    CAMPAIGN_MACHINE.assert_transition(campaign.status, "sent")
    with atomic(db):
        if not stage_completion(db, campaign):
            raise InvalidTransition(f"Campaign {campaign.id} still has pending deliveries")
    db.refresh(campaign)
    return campaign


def fail_campaign(db: Session, tenant_id: int, campaign_id: int, reason: str | None = None) -> models.Campaign:
    campaign = get_campaign(db, tenant_id, campaign_id)
    with atomic(db):
        _move(campaign, "failed")
        notifications.stage_notification(
            db,
            tenant_id,
            "info",
            f'Campaign "{campaign.name}" failed' + (f": {reason}" if reason else "."),
        )
    db.refresh(campaign)
    logger.error("Campaign %s failed: %s", campaign.id, reason or "unspecified")
    return campaign


def due_campaigns(db: Session, now: datetime | None = None) -> list[models.Campaign]:
    """Scheduled campaigns across all tenants whose send time has passed."""
    now = as_utc(now) or utcnow()
    candidates = db.execute(
        select(models.Campaign).where(models.Campaign.status == "scheduled").order_by(models.Campaign.scheduled_at)
    ).scalars()
    return [campaign for campaign in candidates if (as_utc(campaign.scheduled_at) or now) <= now]


def pending_records(db: Session, campaign: models.Campaign) -> list[models.DeliveryRecord]:
    return list(
        db.execute(
            select(models.DeliveryRecord)
            .where(
                models.DeliveryRecord.campaign_id == campaign.id,
                models.DeliveryRecord.tenant_id == campaign.tenant_id,
                models.DeliveryRecord.status == "pending",
            )
            .order_by(models.DeliveryRecord.id)
        ).scalars()
    )
