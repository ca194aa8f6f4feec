"""Append-only click and web-view logs."""
from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from mailroom.db import models
from mailroom.db.session import atomic
from mailroom.services import outcomes
from mailroom.services.isolation import ensure_same_tenant, get_owned


def record_link_click(
    db: Session,
    *,
    campaign_id: int,
    subscriber_id: int,
    url: str,
    tenant_id: int | None = None,
) -> models.LinkClickEvent:
    """Log a click and apply ``clicked`` to the delivery record (first click counts)."""
    record = outcomes.find_record(db, campaign_id, subscriber_id)
    if tenant_id is not None:
        ensure_same_tenant(tenant_id, record.tenant_id, "Delivery record")
    click = models.LinkClickEvent(
        tenant_id=record.tenant_id,
        campaign_id=record.campaign_id,
        subscriber_id=record.subscriber_id,
        url=url,
    )
    with atomic(db):
        db.add(click)
        db.flush()
        outcomes.stage_delivery_event(db, record, "clicked", url=url)
    db.refresh(click)
    return click


def record_web_view(
    db: Session,
    *,
    campaign_id: int,
    subscriber_id: int,
    tenant_id: int | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> models.WebViewEvent:
    record = outcomes.find_record(db, campaign_id, subscriber_id)
    if tenant_id is not None:
        ensure_same_tenant(tenant_id, record.tenant_id, "Delivery record")
    view = models.WebViewEvent(
        tenant_id=record.tenant_id,
        campaign_id=record.campaign_id,
        subscriber_id=record.subscriber_id,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:512] or None,
    )
    with atomic(db):
        db.add(view)
    db.refresh(view)
    return view


def link_stats(db: Session, tenant_id: int, campaign_id: int) -> list[dict]:
    """Clicks per URL: total clicks and distinct clickers."""
    get_owned(db, models.Campaign, tenant_id, campaign_id, "Campaign")
    rows = db.execute(
        select(
            models.LinkClickEvent.url,
            func.count(models.LinkClickEvent.id),
            func.count(func.distinct(models.LinkClickEvent.subscriber_id)),
        )
        .where(models.LinkClickEvent.campaign_id == campaign_id, models.LinkClickEvent.tenant_id == tenant_id)
        .group_by(models.LinkClickEvent.url)
        .order_by(func.count(models.LinkClickEvent.id).desc())
    ).all()
    return [{"url": url, "clicks": clicks, "unique_clicks": unique} for url, clicks, unique in rows]


def web_view_count(db: Session, tenant_id: int, campaign_id: int) -> int:
    get_owned(db, models.Campaign, tenant_id, campaign_id, "Campaign")
    return db.execute(
        select(func.count(models.WebViewEvent.id)).where(
            models.WebViewEvent.campaign_id == campaign_id, models.WebViewEvent.tenant_id == tenant_id
        )
    ).scalar_one()
