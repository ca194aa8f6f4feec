"""Delivery outcomes: idempotent stamping, side effects and analytics agreement."""
from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from mailroom.core.errors import NotFound, TenantMismatch
from mailroom.db import models
from mailroom.services import analytics, audience, notifications, outcomes, suppression


def _apply(db, campaign, subscriber, event_type, **kwargs):
    return outcomes.apply_delivery_event(
        db, campaign_id=campaign.id, subscriber_id=subscriber.id, event_type=event_type, **kwargs
    )


def _record(db, campaign, subscriber):
    db.expire_all()
    return outcomes.find_record(db, campaign.id, subscriber.id)


def test_duplicate_event_is_a_noop(db, tenant, make_campaign, start_campaign):
    built = make_campaign(tenant)
    campaign, _ = start_campaign(built.campaign)
    ada = built.subscribers[0]

    _apply(db, campaign, ada, "sent", message_id="ses-1")
    first = _apply(db, campaign, ada, "opened")
    second = _apply(db, campaign, ada, "opened")

    assert first.applied is True
    assert second.applied is False
    snapshot = analytics.get_campaign_analytics(db, tenant.id, campaign.id)
    assert snapshot.opened == 1
    assert snapshot.sent == 1
    assert _record(db, campaign, ada).message_id == "ses-1"


def test_status_only_moves_forward(db, tenant, make_campaign, start_campaign):
    built = make_campaign(tenant)
    campaign, _ = start_campaign(built.campaign)
    ada = built.subscribers[0]
    t0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

    _apply(db, campaign, ada, "clicked", occurred_at=t0)
    late_open = _apply(db, campaign, ada, "opened", occurred_at=t0 - timedelta(minutes=5))
    late_send = _apply(db, campaign, ada, "sent", occurred_at=t0 - timedelta(minutes=10))

    assert late_open.applied and late_open.status == "clicked"
    assert late_send.applied and late_send.status == "clicked"
    assert _record(db, campaign, ada).status == "clicked"


def test_soft_bounce_leaves_subscriber_alone(db, tenant, make_campaign, start_campaign):
    built = make_campaign(tenant)
    campaign, _ = start_campaign(built.campaign)
    ada = built.subscribers[0]

    result = _apply(db, campaign, ada, "bounced", bounce_type="soft")

    db.expire_all()
    assert result.status == "bounced"
    assert db.get(models.Subscriber, ada.id).status == "active"
    assert suppression.is_suppressed(db, tenant.id, ada.email) is False


def test_hard_bounce_suppresses_and_notifies(db, tenant, make_campaign, start_campaign):
    built = make_campaign(tenant)
    campaign, _ = start_campaign(built.campaign)
    ada = built.subscribers[0]

    _apply(db, campaign, ada, "bounced", bounce_type="hard")
    _apply(db, campaign, ada, "bounced", bounce_type="hard")

    db.expire_all()
    assert db.get(models.Subscriber, ada.id).status == "bounced"
    entries = suppression.list_suppression(db, tenant.id)
    assert [(e.email, e.reason) for e in entries] == [(ada.email, "hard_bounce")]
    types = [n.type for n in notifications.list_notifications(db, tenant.id)]
    assert types.count("bounce") == 1
    assert analytics.get_campaign_analytics(db, tenant.id, campaign.id).bounced == 1


def test_complaint_beats_everything(db, tenant, make_campaign, start_campaign):
    built = make_campaign(tenant)
    campaign, _ = start_campaign(built.campaign)
    ada = built.subscribers[0]

    _apply(db, campaign, ada, "complained")
    result = _apply(db, campaign, ada, "bounced", bounce_type="hard")

    db.expire_all()
    assert result.status == "complained"
    assert db.get(models.Subscriber, ada.id).status == "complained"
    reasons = sorted(e.reason for e in suppression.list_suppression(db, tenant.id))
    assert reasons == ["complaint"]


def test_unsubscribe_event_marks_subscriber(db, tenant, make_campaign, start_campaign):
    built = make_campaign(tenant)
    campaign, _ = start_campaign(built.campaign)
    ada = built.subscribers[0]

    _apply(db, campaign, ada, "unsubscribed")

    db.expire_all()
    assert db.get(models.Subscriber, ada.id).status == "unsubscribed"
    assert analytics.get_campaign_analytics(db, tenant.id, campaign.id).unsubscribed == 1


def test_campaign_completes_when_nothing_is_pending(db, tenant, make_campaign, start_campaign):
    built = make_campaign(tenant, emails=("a@example.com", "b@example.com"))
    campaign, _ = start_campaign(built.campaign)
    first, second = built.subscribers

    _apply(db, campaign, first, "sent")
    db.refresh(campaign)
    assert campaign.status == "sending"

    _apply(db, campaign, second, "failed")
    db.refresh(campaign)
    assert campaign.status == "sent"
    assert campaign.sent_at is not None
    assert [n.type for n in notifications.list_notifications(db, tenant.id)] == ["campaign_sent"]


def test_side_effect_failure_rolls_back_everything(db, tenant, make_campaign, start_campaign, monkeypatch):
    built = make_campaign(tenant)
    campaign, _ = start_campaign(built.campaign)
    ada = built.subscribers[0]

    def explode(*args, **kwargs):
        raise RuntimeError("suppression store unavailable")

    monkeypatch.setattr(outcomes, "stage_suppression", explode)
    with pytest.raises(RuntimeError):
        _apply(db, campaign, ada, "bounced", bounce_type="hard")

    record = _record(db, campaign, ada)
    assert record.bounced_at is None
    assert record.status == "pending"
    assert analytics.get_campaign_analytics(db, tenant.id, campaign.id).bounced == 0
    assert db.get(models.Subscriber, ada.id).status == "active"


def test_events_are_checked_against_tenant(db, make_tenant, make_campaign, start_campaign):
    acme, globex = make_tenant("Acme"), make_tenant("Globex")
    built = make_campaign(acme)
    campaign, _ = start_campaign(built.campaign)

    with pytest.raises(TenantMismatch):
        _apply(db, campaign, built.subscribers[0], "opened", tenant_id=globex.id)
    with pytest.raises(NotFound):
        outcomes.apply_delivery_event(db, campaign_id=campaign.id, subscriber_id=999_999, event_type="opened")


def test_provider_event_by_message_id(db, tenant, make_campaign, start_campaign):
    built = make_campaign(tenant)
    campaign, _ = start_campaign(built.campaign)
    ada = built.subscribers[0]
    _apply(db, campaign, ada, "sent", message_id="ses-abc")

    result = outcomes.apply_provider_event(db, message_id="ses-abc", event_type="delivered")

    assert result.applied is True
    assert result.status == "sent"
    assert outcomes.apply_provider_event(db, message_id="unknown", event_type="delivered") is None


def test_incremental_counters_match_full_recompute(db, tenant, make_campaign, start_campaign):
    emails = [f"user{i}@example.com" for i in range(12)]
    built = make_campaign(tenant, emails=emails)
    campaign, _ = start_campaign(built.campaign)
    rng = random.Random(20250301)
    alive = list(built.subscribers)

    for step in range(120):
        subscriber = rng.choice(alive)
        event_type = rng.choice(outcomes.EVENT_TYPES)
        bounce_type = rng.choice(["hard", "soft", None]) if event_type == "bounced" else None
        _apply(db, campaign, subscriber, event_type, bounce_type=bounce_type)
        if step in (40, 80):
            doomed = alive.pop(rng.randrange(len(alive)))
            audience.delete_subscriber(db, tenant.id, doomed.id)

    db.expire_all()
    incremental = analytics.get_campaign_analytics(db, tenant.id, campaign.id)
    recomputed = analytics.recompute_campaign_analytics(db, tenant.id, campaign.id)
    assert incremental == recomputed
    assert incremental.total_subscribers == len(alive)


def test_deleting_last_pending_recipient_completes_campaign(db, tenant, make_campaign, start_campaign):
    built = make_campaign(tenant, emails=("a@example.com", "b@example.com"))
    campaign, _ = start_campaign(built.campaign)
    a, b = built.subscribers
    _apply(db, campaign, a, "sent")

    audience.delete_subscriber(db, tenant.id, b.id)

    db.expire_all()
    assert db.get(models.Campaign, campaign.id).status == "sent"
    assert analytics.get_campaign_analytics(db, tenant.id, campaign.id).total_subscribers == 1
    kinds = [n.type for n in notifications.list_notifications(db, tenant.id)]
    assert kinds.count("campaign_sent") == 1


def test_repair_overwrites_drifted_counters(db, tenant, make_campaign, start_campaign):
    built = make_campaign(tenant, emails=("a@example.com", "b@example.com"))
    campaign, _ = start_campaign(built.campaign)
    _apply(db, campaign, built.subscribers[0], "opened")

    row = db.execute(
        select(models.CampaignAnalytics).where(models.CampaignAnalytics.campaign_id == campaign.id)
    ).scalar_one()
    row.opened = 40
    db.commit()

    repaired = analytics.repair_campaign_analytics(db, tenant.id, campaign.id)

    db.expire_all()
    assert repaired.opened == 1
    assert analytics.get_campaign_analytics(db, tenant.id, campaign.id) == repaired


def test_drift_sweep_only_touches_drifted_campaigns(db, tenant, make_campaign, start_campaign):
    healthy = make_campaign(tenant, emails=("healthy@example.com",))
    drifted = make_campaign(tenant, emails=("drifted@example.com",))
    make_campaign(tenant, emails=("draft@example.com",))  # draft, never swept
    start_campaign(healthy.campaign)
    start_campaign(drifted.campaign)
    row = db.execute(
        select(models.CampaignAnalytics).where(models.CampaignAnalytics.campaign_id == drifted.campaign.id)
    ).scalar_one()
    row.clicked = 7
    db.commit()

    assert analytics.repair_drifted_analytics(db) == [drifted.campaign.id]
    assert analytics.repair_drifted_analytics(db) == []
