"""Fan-out: eligibility, suppression and idempotent enrollment."""
from __future__ import annotations

import pytest
from sqlalchemy import UniqueConstraint, func, select

from mailroom.core.errors import DuplicateEnrollment, InvalidTransition
from mailroom.core.config import settings
from mailroom.db import models
from mailroom.services import analytics, audience, campaigns, fanout, suppression


def _records(db, campaign):
    return list(
        db.execute(
            select(models.DeliveryRecord)
            .where(models.DeliveryRecord.campaign_id == campaign.id)
            .order_by(models.DeliveryRecord.subscriber_id)
        ).scalars()
    )


def test_vip_list_skips_bounced_and_suppressed(db, tenant):
    vip = audience.create_list(db, tenant.id, name="VIP")
    a = audience.create_subscriber(db, tenant.id, email="a@x.com", list_ids=[vip.id])
    audience.create_subscriber(db, tenant.id, email="b@x.com", status="bounced", list_ids=[vip.id])
    suppression.add_suppression(db, tenant.id, email="b@x.com", reason="hard_bounce")
    campaign = campaigns.create_campaign(db, tenant.id, name="C", subject="Hi", list_ids=[vip.id])

    campaigns.schedule_campaign(db, tenant.id, campaign.id)
    campaign, result = campaigns.start_sending(db, tenant.id, campaign.id)

    records = _records(db, campaign)
    assert [(r.subscriber_id, r.status) for r in records] == [(a.id, "pending")]
    assert result.enrolled == 1
    assert result.ineligible == 1
    assert campaign.status == "sending"
    assert analytics.get_campaign_analytics(db, tenant.id, campaign.id).total_subscribers == 1


def test_fan_out_twice_creates_nothing_new(db, tenant, make_campaign, start_campaign):
    built = make_campaign(tenant, emails=("a@example.com", "b@example.com", "c@example.com"))
    campaign, first = start_campaign(built.campaign)

    again = campaigns.fan_out_campaign(db, tenant.id, campaign.id)
    db.commit()

    assert first.enrolled == 3
    assert again.enrolled == 0
    assert again.already_enrolled == 3
    assert len(_records(db, campaign)) == 3
    assert analytics.get_campaign_analytics(db, tenant.id, campaign.id).total_subscribers == 3


def test_racing_fan_out_treats_losers_as_enrolled(db, tenant, make_campaign, start_campaign):
    built = make_campaign(tenant, emails=("a@example.com", "b@example.com"))
    campaigns.schedule_campaign(db, tenant.id, built.campaign.id)
    # Candidates read before the other writer commits its fan-out.
    stale = fanout.target_subscribers(db, built.campaign)

    campaign, winner = campaigns.start_sending(db, tenant.id, built.campaign.id)
    loser = fanout.enroll_all(db, campaign, stale)
    db.commit()

    assert winner.enrolled == 2
    assert loser.enrolled == 0
    assert loser.already_enrolled == 2
    assert len(_records(db, campaign)) == 2
    assert analytics.recompute_campaign_analytics(db, tenant.id, campaign.id).total_subscribers == 2


def test_delivery_records_have_a_single_conflict_key():
    # Postgres still raises on any unique index that is not the ON CONFLICT target.
    uniques = [
        {column.name for column in constraint.columns}
        for constraint in models.DeliveryRecord.__table__.constraints
        if isinstance(constraint, UniqueConstraint)
    ]

    assert uniques == [{"campaign_id", "subscriber_id", "tenant_id"}]


def test_enroll_raises_duplicate_for_existing_record(db, tenant, make_campaign, start_campaign):
    built = make_campaign(tenant)
    campaign, _ = start_campaign(built.campaign)

    with pytest.raises(DuplicateEnrollment):
        fanout.enroll(db, campaign, built.subscribers[0])
    db.rollback()


def test_domain_suppression_covers_late_joiners_and_subdomains(db, tenant, make_campaign):
    built = make_campaign(tenant, emails=("ok@example.com",))
    suppression.add_suppression(db, tenant.id, domain="bounced.test")
    audience.create_subscriber(db, tenant.id, email="late@bounced.test", list_ids=[built.list.id])
    audience.create_subscriber(db, tenant.id, email="deep@mx.bounced.test", list_ids=[built.list.id])
    audience.create_subscriber(db, tenant.id, email="near@notbounced.test", list_ids=[built.list.id])

    campaigns.schedule_campaign(db, tenant.id, built.campaign.id)
    campaign, result = campaigns.start_sending(db, tenant.id, built.campaign.id)

    emails = sorted(db.get(models.Subscriber, r.subscriber_id).email for r in _records(db, campaign))
    assert emails == ["near@notbounced.test", "ok@example.com"]
    assert result.suppressed == 2


def test_subscriber_on_two_target_lists_gets_one_record(db, tenant, make_campaign):
    built = make_campaign(tenant, emails=("both@example.com",))
    other = audience.create_list(db, tenant.id, name="Second")
    audience.add_to_list(db, tenant.id, built.subscribers[0].id, other.id)
    campaigns.update_campaign(db, tenant.id, built.campaign.id, list_ids=[built.list.id, other.id])

    campaigns.schedule_campaign(db, tenant.id, built.campaign.id)
    campaign, result = campaigns.start_sending(db, tenant.id, built.campaign.id)

    assert result.enrolled == 1
    assert len(_records(db, campaign)) == 1


def test_unconfirmed_subscribers_skipped_when_confirmation_required(db, tenant, make_campaign, monkeypatch):
    monkeypatch.setattr(settings, "require_confirmed_subscribers", True)
    built = make_campaign(tenant, emails=("pending@example.com",))

    campaigns.schedule_campaign(db, tenant.id, built.campaign.id)
    campaign, result = campaigns.start_sending(db, tenant.id, built.campaign.id)

    assert result.ineligible == 1
    assert result.enrolled == 0
    # Nothing to deliver, so the campaign completes at once.
    assert campaign.status == "sent"


def test_fan_out_needs_sending_campaign(db, tenant, make_campaign):
    built = make_campaign(tenant)

    with pytest.raises(InvalidTransition):
        campaigns.fan_out_campaign(db, tenant.id, built.campaign.id)
    count = db.execute(select(func.count(models.DeliveryRecord.id))).scalar()
    assert count == 0
