"""Campaign analytics: incremental counters and a full-scan recompute."""
from __future__ import annotations

from dataclasses import asdict, dataclass

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from mailroom.db import models
from mailroom.db.session import atomic
from mailroom.services.isolation import get_owned
from mailroom.utils.logger import logger

# Event type -> (DeliveryRecord timestamp column, CampaignAnalytics counter).
EVENT_COLUMNS = {
    "sent": ("sent_at", "sent"),
    "delivered": ("delivered_at", "delivered"),
    "opened": ("opened_at", "opened"),
    "clicked": ("clicked_at", "clicked"),
    "bounced": ("bounced_at", "bounced"),
    "complained": ("complained_at", "complained"),
    "unsubscribed": ("unsubscribed_at", "unsubscribed"),
    "failed": ("failed_at", "failed"),
}

COUNTERS = ("total_subscribers",) + tuple(counter for _, counter in EVENT_COLUMNS.values())


@dataclass
class AnalyticsSnapshot:
    total_subscribers: int = 0
    sent: int = 0
    delivered: int = 0
    opened: int = 0
    clicked: int = 0
    bounced: int = 0
    complained: int = 0
    unsubscribed: int = 0
    failed: int = 0

    @classmethod
    def from_row(cls, row: models.CampaignAnalytics) -> "AnalyticsSnapshot":
        return cls(**{counter: getattr(row, counter) or 0 for counter in COUNTERS})

    def as_dict(self) -> dict[str, int]:
        return asdict(self)

    def rates(self) -> dict[str, float]:
        sent = self.sent or 0
        delivered = self.delivered or sent

        def pct(value: int, base: int) -> float:
            return round(value / base * 100, 2) if base else 0.0

        return {
            "open_rate": pct(self.opened, delivered),
            "click_rate": pct(self.clicked, delivered),
            "bounce_rate": pct(self.bounced, sent),
            "complaint_rate": pct(self.complained, sent),
            "unsubscribe_rate": pct(self.unsubscribed, sent),
        }


def ensure_row(db: Session, campaign: models.Campaign) -> models.CampaignAnalytics:
    row = db.execute(
        select(models.CampaignAnalytics).where(models.CampaignAnalytics.campaign_id == campaign.id)
    ).scalar_one_or_none()
    if row is None:
        row = models.CampaignAnalytics(tenant_id=campaign.tenant_id, campaign_id=campaign.id)
        db.add(row)
        db.flush()
    return row


def increment(db: Session, campaign_id: int, counter: str, amount: int = 1) -> None:
    """Bump one counter with ``SET c = c + amount`` in the caller's transaction."""
    if counter not in COUNTERS:
        raise ValueError(f"Unknown analytics counter {counter!r}")
    if amount == 0:
        return
    column = getattr(models.CampaignAnalytics, counter)
    db.execute(
        update(models.CampaignAnalytics)
        .where(models.CampaignAnalytics.campaign_id == campaign_id)
        .values({counter: column + amount})
    )


def retract_record(db: Session, record: models.DeliveryRecord) -> None:
    """Remove a delivery record's contribution before the record is deleted."""
    increment(db, record.campaign_id, "total_subscribers", -1)
    for stamp, counter in EVENT_COLUMNS.values():
        if getattr(record, stamp) is not None:
            increment(db, record.campaign_id, counter, -1)


def recompute_campaign_analytics(db: Session, tenant_id: int, campaign_id: int) -> AnalyticsSnapshot:
    """Derive every counter from the delivery ledger with one full scan."""
    get_owned(db, models.Campaign, tenant_id, campaign_id, "Campaign")
    record = models.DeliveryRecord
    columns = [func.count(record.id)] + [func.count(getattr(record, stamp)) for stamp, _ in EVENT_COLUMNS.values()]
    row = db.execute(
        select(*columns).where(record.campaign_id == campaign_id, record.tenant_id == tenant_id)
    ).one()
    return AnalyticsSnapshot(**dict(zip(COUNTERS, (value or 0 for value in row))))


def get_campaign_analytics(db: Session, tenant_id: int, campaign_id: int) -> AnalyticsSnapshot:
    campaign = get_owned(db, models.Campaign, tenant_id, campaign_id, "Campaign")
    row = db.execute(
        select(models.CampaignAnalytics).where(models.CampaignAnalytics.campaign_id == campaign.id)
    ).scalar_one_or_none()
    return AnalyticsSnapshot.from_row(row) if row is not None else AnalyticsSnapshot()


def repair_campaign_analytics(db: Session, tenant_id: int, campaign_id: int) -> AnalyticsSnapshot:
    """Overwrite the cached counters with a fresh recompute."""
    campaign = get_owned(db, models.Campaign, tenant_id, campaign_id, "Campaign")
    snapshot = recompute_campaign_analytics(db, tenant_id, campaign_id)
    with atomic(db):
        row = ensure_row(db, campaign)
        for counter, value in snapshot.as_dict().items():
            setattr(row, counter, value)
    return snapshot


def repair_drifted_analytics(db: Session) -> list[int]:
    """Compare every started campaign's counters with a recompute and repair the ones that differ."""
    started = db.execute(
        select(models.Campaign.id, models.Campaign.tenant_id)
        .where(models.Campaign.status.in_(("sending", "paused", "sent")))
        .order_by(models.Campaign.id)
    ).all()
    repaired = []
    for campaign_id, tenant_id in started:
        if get_campaign_analytics(db, tenant_id, campaign_id) != recompute_campaign_analytics(db, tenant_id, campaign_id):
            repair_campaign_analytics(db, tenant_id, campaign_id)
            repaired.append(campaign_id)
    if repaired:
        logger.warning("Repaired drifted analytics for campaigns %s", repaired)
    return repaired
