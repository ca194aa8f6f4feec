"""Deliverability dashboard queries for a tenant's recent campaigns."""
from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.orm import Session

from mailroom.core.config import settings
from mailroom.db import models
from mailroom.services.suppression import email_domain, load_index
from mailroom.services.tenants import get_tenant

GMAIL_DOMAINS = frozenset({"gmail.com", "googlemail.com"})
YAHOO_DOMAINS = frozenset({"yahoo.com", "ymail.com", "rocketmail.com", "aol.com"})
OUTLOOK_DOMAINS = frozenset({"outlook.com", "hotmail.com", "live.com", "msn.com"})
PROVIDERS = ("Gmail", "Yahoo", "Outlook", "Other")


@dataclass
class Totals:
    sent: int = 0
    delivered: int = 0
    bounced: int = 0
    complained: int = 0
    unsubscribed: int = 0


def _pct(value: int, base: int) -> float:
    if not base:
        return 0.0
    return min(max(value / base * 100, 0.0), 100.0)


def provider_for(email: str) -> str:
    domain = email_domain(email)
    if domain in GMAIL_DOMAINS:
        return "Gmail"
    if domain in YAHOO_DOMAINS or domain.startswith("yahoo."):
        return "Yahoo"
    if domain in OUTLOOK_DOMAINS or domain.startswith("hotmail."):
        return "Outlook"
    return "Other"


def recent_campaign_ids(db: Session, tenant_id: int, window: int | None = None, offset: int = 0) -> list[int]:
    window = window or settings.dashboard_campaign_window
    return list(
        db.execute(
            select(models.Campaign.id)
            .where(models.Campaign.tenant_id == tenant_id, models.Campaign.status == "sent")
            .order_by(models.Campaign.sent_at.desc(), models.Campaign.id.desc())
            .offset(offset)
            .limit(window)
        ).scalars()
    )


def _totals(db: Session, tenant_id: int, campaign_ids: list[int]) -> Totals:
    if not campaign_ids:
        return Totals()
    row = db.execute(
        select(
            func.coalesce(func.sum(models.CampaignAnalytics.sent), 0),
            func.coalesce(func.sum(models.CampaignAnalytics.bounced), 0),
            func.coalesce(func.sum(models.CampaignAnalytics.complained), 0),
            func.coalesce(func.sum(models.CampaignAnalytics.unsubscribed), 0),
        ).where(
            models.CampaignAnalytics.tenant_id == tenant_id,
            models.CampaignAnalytics.campaign_id.in_(campaign_ids),
        )
    ).one()
    sent, bounced, complained, unsubscribed = (int(value) for value in row)
    return Totals(sent, _delivered_count(db, tenant_id, campaign_ids), bounced, complained, unsubscribed)


def _delivered_count(db: Session, tenant_id: int, campaign_ids: list[int]) -> int:
    # Same rule as _was_delivered, so KPIs and the provider breakdown agree.
    record = models.DeliveryRecord
    return db.execute(
        select(func.count(record.id)).where(
            record.tenant_id == tenant_id,
            record.campaign_id.in_(campaign_ids),
            or_(record.delivered_at.is_not(None), and_(record.sent_at.is_not(None), record.bounced_at.is_(None))),
        )
    ).scalar_one()


def _rates(totals: Totals) -> dict[str, float]:
    return {
        "Delivery Rate": _pct(totals.delivered, totals.sent),
        "Hard Bounce Rate": _pct(totals.bounced, totals.sent),
        "Complaint Rate": _pct(totals.complained, totals.delivered),
        "Unsubscribe Rate": _pct(totals.unsubscribed, totals.delivered),
    }


def kpis(db: Session, tenant_id: int, window: int | None = None) -> list[dict]:
    """Headline rates over the last ``window`` sent campaigns vs the window before."""
    window = window or settings.dashboard_campaign_window
    current_ids = recent_campaign_ids(db, tenant_id, window)
    previous_ids = recent_campaign_ids(db, tenant_id, window, offset=window)
    current = _rates(_totals(db, tenant_id, current_ids))
    previous = _rates(_totals(db, tenant_id, previous_ids)) if previous_ids else None

    items = []
    for title, value in current.items():
        precision = 1 if title == "Delivery Rate" else 2
        delta = round(value - previous[title], precision) if previous is not None else 0.0
        if delta > 0:
            trend = "up"
        elif delta < 0:
            trend = "down"
        else:
            trend = "neutral"
        items.append(
            {
                "title": title,
                "value": f"{value:.{precision}f}%",
                "change": f"{delta:+.{precision}f}%" if delta else f"{0:.{precision}f}%",
                "trend": trend,
            }
        )
    return items


def _recipient_rows(db: Session, tenant_id: int, campaign_ids: list[int]):
    if not campaign_ids:
        return []
    record = models.DeliveryRecord
    return db.execute(
        select(
            models.Subscriber.email,
            record.sent_at,
            record.delivered_at,
            record.bounced_at,
            record.complained_at,
        )
        .join(
            models.Subscriber,
            (models.Subscriber.id == record.subscriber_id) & (models.Subscriber.tenant_id == record.tenant_id),
        )
        .where(record.tenant_id == tenant_id, record.campaign_id.in_(campaign_ids))
    ).all()


def _was_delivered(sent_at, delivered_at, bounced_at) -> bool:
    # Without a provider delivery receipt, a send that never bounced counts as delivered.
    return delivered_at is not None or (sent_at is not None and bounced_at is None)


def _provider_totals(db: Session, tenant_id: int, window: int | None = None) -> dict[str, Totals]:
    buckets = {name: Totals() for name in PROVIDERS}
    for email, sent_at, delivered_at, bounced_at, complained_at in _recipient_rows(
        db, tenant_id, recent_campaign_ids(db, tenant_id, window)
    ):
        bucket = buckets[provider_for(email)]
        if sent_at is not None or delivered_at is not None:
            bucket.sent += 1
        if _was_delivered(sent_at, delivered_at, bounced_at):
            bucket.delivered += 1
        if bounced_at is not None:
            bucket.bounced += 1
        if complained_at is not None:
            bucket.complained += 1
    return buckets


def gmail_spam_rate(db: Session, tenant_id: int, window: int | None = None) -> float:
    """Complaints per delivered message among Gmail recipients, as a 0-1 fraction."""
    gmail = _provider_totals(db, tenant_id, window)["Gmail"]
    if not gmail.delivered:
        return 0.0
    return min(max(gmail.complained / gmail.delivered, 0.0), 1.0)


def domain_performance(db: Session, tenant_id: int, window: int | None = None) -> list[dict]:
    rows = []
    for name, totals in _provider_totals(db, tenant_id, window).items():
        rows.append(
            {
                "name": name,
                "deliveryRate": round(_pct(totals.delivered, totals.sent), 2),
                "complaintRate": round(_pct(totals.complained, totals.sent), 2),
                "spamRate": round(_pct(totals.complained, totals.delivered), 2),
            }
        )
    return rows


def _item(id_: str, name: str, status: str, details: str, fix_link: str) -> dict:
    return {"id": id_, "name": name, "status": status, "details": details, "fixLink": fix_link}


def compliance(db: Session, tenant_id: int) -> list[dict]:
    """Checklist derived from the tenant's own data."""
    tenant = get_tenant(db, tenant_id)
    items = []

    if tenant.ses_verified:
        items.append(_item("sender", "Sender Verification", "pass", "Sending identity is verified.", "/domains"))
    else:
        items.append(
            _item("sender", "Sender Verification", "warn", "Verify your sending domain before large sends.", "/domains")
        )

    templates = db.execute(
        select(models.Template.html_content).where(models.Template.tenant_id == tenant_id)
    ).scalars().all()
    missing = sum(1 for html in templates if "unsubscribe_url" not in html)
    if not templates:
        items.append(_item("list_unsub", "Unsubscribe Link", "warn", "No templates yet.", "/templates"))
    elif missing:
        items.append(
            _item(
                "list_unsub",
                "Unsubscribe Link",
                "fail",
                f"{missing} of {len(templates)} templates lack an {{{{ unsubscribe_url }}}} link.",
                "/templates",
            )
        )
    else:
        items.append(_item("list_unsub", "Unsubscribe Link", "pass", "Every template links to unsubscribe.", "/templates"))

    totals = _totals(db, tenant_id, recent_campaign_ids(db, tenant_id))
    bounce_rate = _pct(totals.bounced, totals.sent)
    status = "pass" if bounce_rate < 2 else "warn" if bounce_rate < 5 else "fail"
    items.append(
        _item("bounces", "Hard Bounce Rate", status, f"{bounce_rate:.2f}% of recent sends bounced.", "/suppression")
    )

    complaint_rate = _pct(totals.complained, totals.delivered)
    status = "pass" if complaint_rate < 0.1 else "warn" if complaint_rate < 0.3 else "fail"
    items.append(
        _item(
            "complaints",
            "Complaint Rate",
            status,
            f"{complaint_rate:.2f}% of delivered messages drew a complaint.",
            "/suppression",
        )
    )

    index = load_index(db, tenant_id)
    negative = db.execute(
        select(models.Subscriber.email).where(
            models.Subscriber.tenant_id == tenant_id,
            models.Subscriber.status.in_(("bounced", "complained")),
        )
    ).scalars().all()
    unsuppressed = sum(1 for email in negative if not index.matches(email))
    if unsuppressed:
        items.append(
            _item(
                "suppression",
                "Suppression Coverage",
                "warn",
                f"{unsuppressed} bounced or complaining subscribers are not on the suppression list.",
                "/suppression",
            )
        )
    else:
        items.append(
            _item("suppression", "Suppression Coverage", "pass", "Bounces and complaints are suppressed.", "/suppression")
        )

    active, confirmed = db.execute(
        select(
            func.count(models.Subscriber.id),
            func.coalesce(func.sum(case((models.Subscriber.confirmed.is_(True), 1), else_=0)), 0),
        ).where(models.Subscriber.tenant_id == tenant_id, models.Subscriber.status == "active")
    ).one()
    share = (int(confirmed) / active * 100) if active else 100.0
    status = "pass" if share >= 90 else "warn"
    items.append(
        _item(
            "double_opt_in",
            "Double Opt-In",
            status,
            f"{share:.0f}% of active subscribers confirmed their address.",
            "/subscribers",
        )
    )
    return items


def overview(db: Session, tenant_id: int) -> dict:
    return {
        "kpis": kpis(db, tenant_id),
        "gmailSpamRate": gmail_spam_rate(db, tenant_id),
        "domainPerformance": domain_performance(db, tenant_id),
        "complianceChecklist": compliance(db, tenant_id),
    }
