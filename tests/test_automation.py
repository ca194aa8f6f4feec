"""Automation rules: typed definitions and exactly-once execution."""
from __future__ import annotations

import pytest
from pydantic import ValidationError
from sqlalchemy import func, select

from mailroom.core.errors import ConstraintViolation
from mailroom.db import models
from mailroom.services import audience, automation, engagement


def test_subscriber_created_rule_runs_once(db, tenant):
    welcome = audience.create_list(db, tenant.id, name="Welcome")
    automation.create_rule(
        db,
        tenant.id,
        name="Everyone gets welcome",
        trigger=automation.SubscriberCreatedTrigger(),
        action=automation.AddToListAction(list_id=welcome.id),
    )

    sub = audience.create_subscriber(db, tenant.id, email="new@example.com")
    assert audience.subscriber_list_ids(db, sub) == [welcome.id]

    replay = automation.TriggerEvent(
        trigger="subscriber_created", tenant_id=tenant.id, subscriber_id=sub.id, key=f"subscriber_created:{sub.id}"
    )
    assert automation.fire(db, replay) == 0
    db.commit()
    runs = db.execute(select(func.count(models.AutomationRun.id))).scalar()
    assert runs == 1


def test_email_domain_condition(db, tenant):
    partners = audience.create_list(db, tenant.id, name="Partners")
    automation.create_rule(
        db,
        tenant.id,
        name="Partner domain",
        trigger=automation.SubscriberCreatedTrigger(email_domain="partner.io"),
        action=automation.AddToListAction(list_id=partners.id),
    )

    outsider = audience.create_subscriber(db, tenant.id, email="x@example.com")
    partner = audience.create_subscriber(db, tenant.id, email="y@Partner.io")

    assert audience.subscriber_list_ids(db, outsider) == []
    assert audience.subscriber_list_ids(db, partner) == [partners.id]


def test_mutually_adding_rules_terminate(db, tenant):
    first = audience.create_list(db, tenant.id, name="First")
    second = audience.create_list(db, tenant.id, name="Second")
    automation.create_rule(
        db,
        tenant.id,
        name="first to second",
        trigger=automation.SubscribedToListTrigger(list_id=first.id),
        action=automation.AddToListAction(list_id=second.id),
    )
    automation.create_rule(
        db,
        tenant.id,
        name="second to first",
        trigger=automation.SubscribedToListTrigger(list_id=second.id),
        action=automation.AddToListAction(list_id=first.id),
    )

    sub = audience.create_subscriber(db, tenant.id, email="loop@example.com", list_ids=[first.id])

    assert sorted(audience.subscriber_list_ids(db, sub)) == sorted([first.id, second.id])
    db.expire_all()
    assert audience.get_list(db, tenant.id, first.id).subscriber_count == 1
    assert audience.get_list(db, tenant.id, second.id).subscriber_count == 1


def test_send_email_action_enqueues_after_commit(db, tenant, make_campaign, outbox):
    built = make_campaign(tenant)
    automation.create_rule(
        db,
        tenant.id,
        name="Welcome mail",
        trigger=automation.SubscriberCreatedTrigger(),
        action=automation.SendEmailAction(template_id=built.template.id),
    )

    sub = audience.create_subscriber(db, tenant.id, email="hello@example.com")

    assert outbox.template_emails == [
        {"tenant_id": tenant.id, "template_id": built.template.id, "subscriber_id": sub.id}
    ]


def test_link_click_rule_updates_field(db, tenant, make_campaign, start_campaign):
    built = make_campaign(tenant)
    campaign, _ = start_campaign(built.campaign)
    automation.create_rule(
        db,
        tenant.id,
        name="Tag sale clickers",
        trigger=automation.LinkClickedTrigger(campaign_id=campaign.id, url_contains="/sale"),
        action=automation.UpdateFieldAction(field="segment", value="bargain-hunter"),
    )
    ada = built.subscribers[0]

    engagement.record_link_click(db, campaign_id=campaign.id, subscriber_id=ada.id, url="https://shop.example.com/sale")
    engagement.record_link_click(db, campaign_id=campaign.id, subscriber_id=ada.id, url="https://shop.example.com/sale")

    db.expire_all()
    assert db.get(models.Subscriber, ada.id).custom_fields == {"segment": "bargain-hunter"}
    assert db.execute(select(func.count(models.AutomationRun.id))).scalar() == 1
    assert db.execute(select(func.count(models.LinkClickEvent.id))).scalar() == 2


def test_inactive_rule_does_not_fire(db, tenant):
    welcome = audience.create_list(db, tenant.id, name="Welcome")
    rule = automation.create_rule(
        db,
        tenant.id,
        name="Disabled",
        trigger=automation.SubscriberCreatedTrigger(),
        action=automation.AddToListAction(list_id=welcome.id),
    )
    automation.update_rule(db, tenant.id, rule.id, is_active=False)

    sub = audience.create_subscriber(db, tenant.id, email="quiet@example.com")
    assert audience.subscriber_list_ids(db, sub) == []


def test_protected_fields_cannot_be_updated(db, tenant):
    with pytest.raises(ConstraintViolation):
        automation.create_rule(
            db,
            tenant.id,
            name="Bad",
            trigger=automation.SubscriberCreatedTrigger(),
            action=automation.UpdateFieldAction(field="status", value="active"),
        )


def test_definitions_are_closed_variants():
    trigger = automation.TRIGGER_ADAPTER.validate_python({"type": "link_clicked", "url_contains": "/pricing"})
    assert isinstance(trigger, automation.LinkClickedTrigger)

    with pytest.raises(ValidationError):
        automation.TRIGGER_ADAPTER.validate_python({"type": "tag_added"})
    with pytest.raises(ValidationError):
        automation.ACTION_ADAPTER.validate_python({"type": "add_to_list", "list_id": 1, "tag": "vip"})


def test_stored_rule_round_trips(db, tenant):
    vip = audience.create_list(db, tenant.id, name="VIP")
    rule = automation.create_rule(
        db,
        tenant.id,
        name="Openers",
        trigger=automation.EmailOpenedTrigger(),
        action=automation.RemoveFromListAction(list_id=vip.id),
    )

    assert rule.trigger_type == "email_opened"
    assert rule.action_list_id == vip.id
    assert automation.parse_action(rule) == automation.RemoveFromListAction(list_id=vip.id)
