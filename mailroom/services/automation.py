"""Automation rules: typed triggers and actions with exactly-once execution."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mailroom.core.errors import ConstraintViolation, NotFound
from mailroom.db import models
from mailroom.db.session import atomic, on_commit
from mailroom.db.upsert import insert_ignore
from mailroom.services import audience
from mailroom.services.isolation import get_owned, resolve_reference
from mailroom.services.suppression import email_domain, is_suppressed
from mailroom.utils.logger import logger


class _Variant(BaseModel):
    model_config = ConfigDict(extra="forbid")


class SubscriberCreatedTrigger(_Variant):
    type: Literal["subscriber_created"] = "subscriber_created"
    email_domain: str | None = None
    list_id: int | None = None


class SubscribedToListTrigger(_Variant):
    type: Literal["subscribed_to_list"] = "subscribed_to_list"
    list_id: int | None = None


class EmailOpenedTrigger(_Variant):
    type: Literal["email_opened"] = "email_opened"
    campaign_id: int | None = None


class LinkClickedTrigger(_Variant):
    type: Literal["link_clicked"] = "link_clicked"
    campaign_id: int | None = None
    url_contains: str | None = None


class AddToListAction(_Variant):
    type: Literal["add_to_list"] = "add_to_list"
    list_id: int


class RemoveFromListAction(_Variant):
    type: Literal["remove_from_list"] = "remove_from_list"
    list_id: int


class SendEmailAction(_Variant):
    type: Literal["send_email"] = "send_email"
    template_id: int


class UpdateFieldAction(_Variant):
    type: Literal["update_field"] = "update_field"
    field: str = Field(min_length=1)
    value: Any = None


Trigger = Annotated[
    Union[SubscriberCreatedTrigger, SubscribedToListTrigger, EmailOpenedTrigger, LinkClickedTrigger],
    Field(discriminator="type"),
]
Action = Annotated[
    Union[AddToListAction, RemoveFromListAction, SendEmailAction, UpdateFieldAction],
    Field(discriminator="type"),
]

TRIGGER_ADAPTER: TypeAdapter = TypeAdapter(Trigger)
ACTION_ADAPTER: TypeAdapter = TypeAdapter(Action)
TRIGGER_TYPES = ("subscriber_created", "subscribed_to_list", "email_opened", "link_clicked")
NAMED_FIELDS = ("first_name", "last_name")


@dataclass
class TriggerEvent:
    """Something that happened to a subscriber; ``key`` identifies it uniquely."""

    trigger: str
    tenant_id: int
    subscriber_id: int
    key: str
    list_id: int | None = None
    campaign_id: int | None = None
    url: str | None = None


def parse_trigger(rule: models.AutomationRule):
    return TRIGGER_ADAPTER.validate_python({"type": rule.trigger_type, **(rule.trigger_conditions or {})})


def parse_action(rule: models.AutomationRule):
    return ACTION_ADAPTER.validate_python({"type": rule.action_type, **(rule.action_data or {})})


# ---------------------------------------------------------------------------
# Rule CRUD
# ---------------------------------------------------------------------------


def _check_references(db: Session, tenant_id: int, trigger, action) -> None:
    trigger_list = getattr(trigger, "list_id", None)
    if trigger_list is not None:
        resolve_reference(db, models.MailingList, tenant_id, trigger_list, "List")
    trigger_campaign = getattr(trigger, "campaign_id", None)
    if trigger_campaign is not None:
        resolve_reference(db, models.Campaign, tenant_id, trigger_campaign, "Campaign")
    if isinstance(action, (AddToListAction, RemoveFromListAction)):
        resolve_reference(db, models.MailingList, tenant_id, action.list_id, "List")
    elif isinstance(action, SendEmailAction):
        resolve_reference(db, models.Template, tenant_id, action.template_id, "Template")
    elif isinstance(action, UpdateFieldAction) and action.field in ("email", "status", "id", "tenant_id"):
        raise ConstraintViolation(f"Field {action.field!r} cannot be set by an automation")


def _apply_definition(rule: models.AutomationRule, trigger, action) -> None:
    rule.trigger_type = trigger.type
    rule.trigger_conditions = trigger.model_dump(exclude={"type"}, exclude_none=True)
    rule.action_type = action.type
    rule.action_data = action.model_dump(exclude={"type"})
    rule.action_list_id = getattr(action, "list_id", None)
    rule.action_template_id = getattr(action, "template_id", None)


def get_rule(db: Session, tenant_id: int, rule_id: int) -> models.AutomationRule:
    return get_owned(db, models.AutomationRule, tenant_id, rule_id, "Automation rule")


def list_rules(db: Session, tenant_id: int) -> list[models.AutomationRule]:
    return list(
        db.execute(
            select(models.AutomationRule)
            .where(models.AutomationRule.tenant_id == tenant_id)
            .order_by(models.AutomationRule.created_at.desc(), models.AutomationRule.id.desc())
        ).scalars()
    )


def create_rule(db: Session, tenant_id: int, *, name: str, trigger, action, is_active: bool = True) -> models.AutomationRule:
    _check_references(db, tenant_id, trigger, action)
    rule = models.AutomationRule(tenant_id=tenant_id, name=name, is_active=is_active)
    _apply_definition(rule, trigger, action)
    try:
        with atomic(db):
            db.add(rule)
    except IntegrityError as exc:
        raise ConstraintViolation("Automation rule references rows outside this tenant") from exc
    db.refresh(rule)
    return rule


def update_rule(
    db: Session,
    tenant_id: int,
    rule_id: int,
    *,
    name: str | None = None,
    trigger=None,
    action=None,
    is_active: bool | None = None,
) -> models.AutomationRule:
    rule = get_rule(db, tenant_id, rule_id)
    trigger = trigger or parse_trigger(rule)
    action = action or parse_action(rule)
    _check_references(db, tenant_id, trigger, action)
    with atomic(db):
        if name is not None:
            rule.name = name
        if is_active is not None:
            rule.is_active = is_active
        _apply_definition(rule, trigger, action)
    db.refresh(rule)
    return rule


def delete_rule(db: Session, tenant_id: int, rule_id: int) -> None:
    rule = get_rule(db, tenant_id, rule_id)
    with atomic(db):
        db.delete(rule)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def matches(db: Session, trigger, event: TriggerEvent, subscriber: models.Subscriber) -> bool:
    if isinstance(trigger, SubscriberCreatedTrigger):
        if trigger.email_domain and email_domain(subscriber.email) != trigger.email_domain.lower().lstrip("@"):
            return False
        if trigger.list_id is not None:
            return trigger.list_id in audience.subscriber_list_ids(db, subscriber)
        return True
    if isinstance(trigger, SubscribedToListTrigger):
        return trigger.list_id is None or trigger.list_id == event.list_id
    if isinstance(trigger, EmailOpenedTrigger):
        return trigger.campaign_id is None or trigger.campaign_id == event.campaign_id
    if isinstance(trigger, LinkClickedTrigger):
        if trigger.campaign_id is not None and trigger.campaign_id != event.campaign_id:
            return False
        return not trigger.url_contains or trigger.url_contains in (event.url or "")
    return False


def _run_action(db: Session, rule: models.AutomationRule, action, subscriber: models.Subscriber) -> None:
    if isinstance(action, AddToListAction):
        mailing_list = db.get(models.MailingList, action.list_id)
        if mailing_list is None:
            raise NotFound(f"List {action.list_id} not found")
        audience.stage_membership(db, subscriber, mailing_list)
    elif isinstance(action, RemoveFromListAction):
        mailing_list = db.get(models.MailingList, action.list_id)
        if mailing_list is None:
            raise NotFound(f"List {action.list_id} not found")
        audience.stage_removal(db, subscriber, mailing_list)
    elif isinstance(action, SendEmailAction):
        if subscriber.status != "active" or is_suppressed(db, subscriber.tenant_id, subscriber.email):
            logger.info("Rule %s skipped send to inactive or suppressed subscriber %s", rule.id, subscriber.id)
            return
        from mailroom.queue.worker import enqueue_template_email

        tenant_id, template_id, subscriber_id = subscriber.tenant_id, action.template_id, subscriber.id
        on_commit(
            db,
            lambda: enqueue_template_email(tenant_id=tenant_id, template_id=template_id, subscriber_id=subscriber_id),
        )
    elif isinstance(action, UpdateFieldAction):
        if action.field in NAMED_FIELDS:
            setattr(subscriber, action.field, None if action.value is None else str(action.value))
        else:
            subscriber.custom_fields = {**(subscriber.custom_fields or {}), action.field: action.value}
        db.flush()


def fire(db: Session, event: TriggerEvent) -> int:
    """Run every active rule matching ``event`` once. Returns how many ran.

    Runs inside the caller's transaction. The ``automation_runs`` ledger is
    keyed by (rule, event key) so a redelivered event runs nothing.
    """
    rules = db.execute(
        select(models.AutomationRule)
        .where(
            models.AutomationRule.tenant_id == event.tenant_id,
            models.AutomationRule.trigger_type == event.trigger,
            models.AutomationRule.is_active.is_(True),
        )
        .order_by(models.AutomationRule.id)
    ).scalars().all()
    if not rules:
        return 0
    subscriber = db.get(models.Subscriber, event.subscriber_id)
    if subscriber is None or subscriber.tenant_id != event.tenant_id:
        return 0

    ran = 0
    for rule in rules:
        if not matches(db, parse_trigger(rule), event, subscriber):
            continue
        run_id = insert_ignore(
            db,
            models.AutomationRun,
            {"tenant_id": rule.tenant_id, "rule_id": rule.id, "event_key": event.key},
            ("rule_id", "event_key"),
        )
        if run_id is None:
            continue
        _run_action(db, rule, parse_action(rule), subscriber)
        ran += 1
        logger.info("Automation rule %s ran for %s", rule.id, event.key)
    return ran
