"""Campaign fan-out: one pending delivery record per eligible subscriber."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mailroom.core.config import settings
from mailroom.core.errors import DuplicateEnrollment, NotFound
from mailroom.db import models
from mailroom.db.upsert import insert_ignore
from mailroom.services import analytics
from mailroom.services.suppression import SuppressionIndex, load_index
from mailroom.utils.logger import logger


@dataclass
class FanOutResult:
    enrolled: int = 0
    already_enrolled: int = 0
    suppressed: int = 0
    ineligible: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "enrolled": self.enrolled,
            "already_enrolled": self.already_enrolled,
            "suppressed": self.suppressed,
            "ineligible": self.ineligible,
        }


def target_subscribers(db: Session, campaign: models.Campaign) -> list[models.Subscriber]:
    """Distinct subscribers of every list the campaign targets."""
    list_ids = select(models.CampaignList.list_id).where(
        models.CampaignList.campaign_id == campaign.id,
        models.CampaignList.tenant_id == campaign.tenant_id,
    )
    subscriber_ids = select(models.ListMembership.subscriber_id).where(
        models.ListMembership.tenant_id == campaign.tenant_id,
        models.ListMembership.list_id.in_(list_ids),
    )
    return list(
        db.execute(
            select(models.Subscriber)
            .where(models.Subscriber.tenant_id == campaign.tenant_id, models.Subscriber.id.in_(subscriber_ids))
            .order_by(models.Subscriber.id)
        ).scalars()
    )


def is_eligible(subscriber: models.Subscriber) -> bool:
    if subscriber.status != "active":
        return False
    if settings.require_confirmed_subscribers and not subscriber.confirmed:
        return False
    return True


def enroll(db: Session, campaign: models.Campaign, subscriber: models.Subscriber) -> int:
    """Insert the pending record for ``subscriber`` or raise :class:`DuplicateEnrollment`."""
    try:
        record_id = insert_ignore(
            db,
            models.DeliveryRecord,
            {
                "tenant_id": campaign.tenant_id,
                "campaign_id": campaign.id,
                "subscriber_id": subscriber.id,
                "status": "pending",
            },
            ("campaign_id", "subscriber_id", "tenant_id"),
        )
    except IntegrityError as exc:
        # The campaign, subscriber or tenant vanished under us.
        raise NotFound(f"Campaign {campaign.id} or subscriber {subscriber.id} no longer exists") from exc
    if record_id is None:
        raise DuplicateEnrollment(f"Subscriber {subscriber.id} is already enrolled in campaign {campaign.id}")
    return record_id


def enroll_all(
    db: Session,
    campaign: models.Campaign,
    subscribers: Iterable[models.Subscriber],
    index: SuppressionIndex | None = None,
) -> FanOutResult:
    """Filter and enroll ``subscribers`` inside the caller's transaction."""
    if index is None:
        index = load_index(db, campaign.tenant_id)
    result = FanOutResult()
    for subscriber in subscribers:
        if not is_eligible(subscriber):
            result.ineligible += 1
            continue
        if index.matches(subscriber.email):
            result.suppressed += 1
            continue
        try:
            enroll(db, campaign, subscriber)
        except DuplicateEnrollment:
            result.already_enrolled += 1
            continue
        result.enrolled += 1

    analytics.ensure_row(db, campaign)
    analytics.increment(db, campaign.id, "total_subscribers", result.enrolled)
    return result


def fan_out(db: Session, campaign: models.Campaign) -> FanOutResult:
    """Stage delivery records for the campaign's current audience.

    Safe to repeat: subscribers that already have a record are counted as
    ``already_enrolled`` and left untouched.
    """
    result = enroll_all(db, campaign, target_subscribers(db, campaign))
    logger.info(
        "Campaign %s fan-out: enrolled=%s already=%s suppressed=%s ineligible=%s",
        campaign.id,
        result.enrolled,
        result.already_enrolled,
        result.suppressed,
        result.ineligible,
    )
    return result
