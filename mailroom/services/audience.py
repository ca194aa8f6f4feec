"""Lists, subscribers and list memberships for a tenant."""
from __future__ import annotations

import csv
import io
import secrets
from datetime import timedelta
from typing import Any, Iterable

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mailroom.core.config import settings
from mailroom.core.errors import ConstraintViolation, NotFound
from mailroom.db import models
from mailroom.db.session import atomic
from mailroom.db.upsert import insert_ignore
from mailroom.services.isolation import get_owned, resolve_reference, resolve_references
from mailroom.utils.datetime import as_utc, utcnow
from mailroom.utils.logger import logger


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Lists
# ---------------------------------------------------------------------------


def create_list(db: Session, tenant_id: int, *, name: str, description: str | None = None) -> models.MailingList:
    mailing_list = models.MailingList(tenant_id=tenant_id, name=name.strip(), description=description)
    try:
        with atomic(db):
            db.add(mailing_list)
    except IntegrityError as exc:
        raise ConstraintViolation(f"A list named {name!r} already exists") from exc
    db.refresh(mailing_list)
    return mailing_list


def list_lists(db: Session, tenant_id: int) -> list[models.MailingList]:
    return list(
        db.execute(
            select(models.MailingList)
            .where(models.MailingList.tenant_id == tenant_id)
            .order_by(models.MailingList.name)
        ).scalars()
    )


def get_list(db: Session, tenant_id: int, list_id: int) -> models.MailingList:
    return get_owned(db, models.MailingList, tenant_id, list_id, "List")


def update_list(db: Session, tenant_id: int, list_id: int, *, name: str | None = None, description: str | None = None) -> models.MailingList:
    mailing_list = get_list(db, tenant_id, list_id)
    if name is not None:
        mailing_list.name = name.strip()
    if description is not None:
        mailing_list.description = description
    try:
        with atomic(db):
            db.add(mailing_list)
    except IntegrityError as exc:
        raise ConstraintViolation(f"A list named {name!r} already exists") from exc
    db.refresh(mailing_list)
    return mailing_list


def delete_list(db: Session, tenant_id: int, list_id: int) -> None:
    mailing_list = get_list(db, tenant_id, list_id)
    with atomic(db):
        db.delete(mailing_list)


def list_members(db: Session, tenant_id: int, list_id: int) -> list[models.Subscriber]:
    get_list(db, tenant_id, list_id)
    return list(
        db.execute(
            select(models.Subscriber)
            .join(
                models.ListMembership,
                (models.ListMembership.subscriber_id == models.Subscriber.id)
                & (models.ListMembership.tenant_id == models.Subscriber.tenant_id),
            )
            .where(models.ListMembership.list_id == list_id, models.ListMembership.tenant_id == tenant_id)
            .order_by(models.Subscriber.email)
        ).scalars()
    )


# ---------------------------------------------------------------------------
# Memberships
# ---------------------------------------------------------------------------


def stage_membership(db: Session, subscriber: models.Subscriber, mailing_list: models.MailingList) -> int | None:
    """Add ``subscriber`` to ``mailing_list`` inside the caller's transaction.

    Membership is a set: an existing membership is left alone and ``None`` is
    returned. A new membership bumps the cached count and fires the
    ``subscribed_to_list`` trigger.
    """
    from mailroom.services import automation

    membership_id = insert_ignore(
        db,
        models.ListMembership,
        {"tenant_id": subscriber.tenant_id, "list_id": mailing_list.id, "subscriber_id": subscriber.id},
        ("list_id", "subscriber_id"),
    )
    if membership_id is None:
        return None
    db.execute(
        update(models.MailingList)
        .where(models.MailingList.id == mailing_list.id)
        .values(subscriber_count=models.MailingList.subscriber_count + 1)
    )
    automation.fire(
        db,
        automation.TriggerEvent(
            trigger="subscribed_to_list",
            tenant_id=subscriber.tenant_id,
            subscriber_id=subscriber.id,
            key=f"subscribed_to_list:{membership_id}",
            list_id=mailing_list.id,
        ),
    )
    return membership_id


def stage_removal(db: Session, subscriber: models.Subscriber, mailing_list: models.MailingList) -> bool:
    result = db.execute(
        delete(models.ListMembership).where(
            models.ListMembership.list_id == mailing_list.id,
            models.ListMembership.subscriber_id == subscriber.id,
            models.ListMembership.tenant_id == subscriber.tenant_id,
        )
    )
    if not result.rowcount:
        return False
    db.execute(
        update(models.MailingList)
        .where(models.MailingList.id == mailing_list.id)
        .values(subscriber_count=models.MailingList.subscriber_count - 1)
    )
    return True


def add_to_list(db: Session, tenant_id: int, subscriber_id: int, list_id: int) -> bool:
    subscriber = get_subscriber(db, tenant_id, subscriber_id)
    mailing_list = resolve_reference(db, models.MailingList, tenant_id, list_id, "List")
    with atomic(db):
        added = stage_membership(db, subscriber, mailing_list) is not None
    return added


def remove_from_list(db: Session, tenant_id: int, subscriber_id: int, list_id: int) -> bool:
    subscriber = get_subscriber(db, tenant_id, subscriber_id)
    mailing_list = resolve_reference(db, models.MailingList, tenant_id, list_id, "List")
    with atomic(db):
        removed = stage_removal(db, subscriber, mailing_list)
    return removed


def subscriber_list_ids(db: Session, subscriber: models.Subscriber) -> list[int]:
    return list(
        db.execute(
            select(models.ListMembership.list_id)
            .where(
                models.ListMembership.subscriber_id == subscriber.id,
                models.ListMembership.tenant_id == subscriber.tenant_id,
            )
            .order_by(models.ListMembership.list_id)
        ).scalars()
    )


# ---------------------------------------------------------------------------
# Subscribers
# ---------------------------------------------------------------------------


def get_subscriber(db: Session, tenant_id: int, subscriber_id: int) -> models.Subscriber:
    return get_owned(db, models.Subscriber, tenant_id, subscriber_id, "Subscriber")


def find_subscriber_by_email(db: Session, tenant_id: int, email: str) -> models.Subscriber | None:
    return db.execute(
        select(models.Subscriber).where(
            models.Subscriber.tenant_id == tenant_id,
            models.Subscriber.email == normalize_email(email),
        )
    ).scalar_one_or_none()


def list_subscribers(
    db: Session, tenant_id: int, *, status: str | None = None, list_id: int | None = None
) -> list[models.Subscriber]:
    query = select(models.Subscriber).where(models.Subscriber.tenant_id == tenant_id)
    if status is not None:
        query = query.where(models.Subscriber.status == status)
    if list_id is not None:
        get_list(db, tenant_id, list_id)
        query = query.join(
            models.ListMembership,
            (models.ListMembership.subscriber_id == models.Subscriber.id)
            & (models.ListMembership.tenant_id == models.Subscriber.tenant_id),
        ).where(models.ListMembership.list_id == list_id)
    return list(db.execute(query.order_by(models.Subscriber.created_at.desc(), models.Subscriber.id.desc())).scalars())


def stage_subscriber(
    db: Session,
    tenant_id: int,
    *,
    email: str,
    first_name: str | None = None,
    last_name: str | None = None,
    status: str = "active",
    lists: Iterable[models.MailingList] = (),
    custom_fields: dict[str, Any] | None = None,
    consent_given: bool = False,
    confirmed: bool = False,
) -> models.Subscriber:
    """Insert a subscriber and its memberships without committing."""
    from mailroom.services import automation

    if status not in models.SUBSCRIBER_STATUSES:
        raise ConstraintViolation(f"Unknown subscriber status {status!r}")
    subscriber = models.Subscriber(
        tenant_id=tenant_id,
        email=normalize_email(email),
        first_name=first_name,
        last_name=last_name,
        status=status,
        custom_fields=custom_fields or {},
        consent_given=consent_given,
        consent_at=utcnow() if consent_given else None,
        confirmed=confirmed,
        confirmed_at=utcnow() if confirmed else None,
    )
    db.add(subscriber)
    db.flush()
    for mailing_list in lists:
        stage_membership(db, subscriber, mailing_list)
    automation.fire(
        db,
        automation.TriggerEvent(
            trigger="subscriber_created",
            tenant_id=tenant_id,
            subscriber_id=subscriber.id,
            key=f"subscriber_created:{subscriber.id}",
        ),
    )
    return subscriber


def create_subscriber(
    db: Session,
    tenant_id: int,
    *,
    email: str,
    first_name: str | None = None,
    last_name: str | None = None,
    status: str = "active",
    list_ids: Iterable[int] = (),
    custom_fields: dict[str, Any] | None = None,
    consent_given: bool = False,
) -> models.Subscriber:
    if find_subscriber_by_email(db, tenant_id, email) is not None:
        raise ConstraintViolation(f"Subscriber {normalize_email(email)} already exists")
    lists = resolve_references(db, models.MailingList, tenant_id, list_ids, "List")
    try:
        with atomic(db):
            subscriber = stage_subscriber(
                db,
                tenant_id,
                email=email,
                first_name=first_name,
                last_name=last_name,
                status=status,
                lists=lists,
                custom_fields=custom_fields,
                consent_given=consent_given,
            )
    except IntegrityError as exc:
        raise ConstraintViolation(f"Subscriber {normalize_email(email)} already exists") from exc
    db.refresh(subscriber)
    return subscriber


def update_subscriber(
    db: Session,
    tenant_id: int,
    subscriber_id: int,
    *,
    first_name: str | None = None,
    last_name: str | None = None,
    status: str | None = None,
    custom_fields: dict[str, Any] | None = None,
    list_ids: Iterable[int] | None = None,
) -> models.Subscriber:
    subscriber = get_subscriber(db, tenant_id, subscriber_id)
    target_lists = None
    if list_ids is not None:
        target_lists = resolve_references(db, models.MailingList, tenant_id, list_ids, "List")
    if status is not None and status not in models.SUBSCRIBER_STATUSES:
        raise ConstraintViolation(f"Unknown subscriber status {status!r}")

    with atomic(db):
        if first_name is not None:
            subscriber.first_name = first_name
        if last_name is not None:
            subscriber.last_name = last_name
        if status is not None:
            subscriber.status = status
        if custom_fields is not None:
            subscriber.custom_fields = {**(subscriber.custom_fields or {}), **custom_fields}
        if target_lists is not None:
            wanted = {mailing_list.id: mailing_list for mailing_list in target_lists}
            current = set(subscriber_list_ids(db, subscriber))
            for list_id in current - wanted.keys():
                stage_removal(db, subscriber, get_list(db, tenant_id, list_id))
            for list_id in wanted.keys() - current:
                stage_membership(db, subscriber, wanted[list_id])
        db.add(subscriber)
    db.refresh(subscriber)
    return subscriber


def delete_subscriber(db: Session, tenant_id: int, subscriber_id: int) -> None:
    """Delete a subscriber, keeping list counts and campaign analytics exact.

    A ``sending`` campaign whose last pending recipient this was completes
    in the same transaction.
    """
    from mailroom.services import analytics, campaigns

    subscriber = get_subscriber(db, tenant_id, subscriber_id)
    with atomic(db):
        for list_id in subscriber_list_ids(db, subscriber):
            stage_removal(db, subscriber, get_list(db, tenant_id, list_id))
        records = db.execute(
            select(models.DeliveryRecord).where(
                models.DeliveryRecord.subscriber_id == subscriber.id,
                models.DeliveryRecord.tenant_id == tenant_id,
            )
        ).scalars().all()
        for record in records:
            analytics.retract_record(db, record)
        campaign_ids = sorted({record.campaign_id for record in records})
        db.delete(subscriber)
        db.flush()
        for campaign_id in campaign_ids:
            campaigns.stage_completion(db, campaigns.get_campaign(db, tenant_id, campaign_id))


def import_csv(db: Session, tenant_id: int, csv_text: str, list_ids: Iterable[int] = ()) -> tuple[int, int]:
    """Import subscribers from CSV text (columns: email, first_name, last_name).

    Existing subscribers are skipped but still joined to the given lists.
    """
    reader = csv.DictReader(io.StringIO(csv_text.strip()))
    if "email" not in set(reader.fieldnames or []):
        raise ConstraintViolation("CSV must include email column")
    lists = resolve_references(db, models.MailingList, tenant_id, list_ids, "List")

    created = 0
    skipped = 0
    seen: set[str] = set()
    with atomic(db):
        for row in reader:
            email = normalize_email(row.get("email") or "")
            if not email or "@" not in email or email in seen:
                skipped += 1
                continue
            seen.add(email)
            existing = find_subscriber_by_email(db, tenant_id, email)
            if existing is not None:
                for mailing_list in lists:
                    stage_membership(db, existing, mailing_list)
                skipped += 1
                continue
            stage_subscriber(
                db,
                tenant_id,
                email=email,
                first_name=(row.get("first_name") or "").strip() or None,
                last_name=(row.get("last_name") or "").strip() or None,
                lists=lists,
            )
            created += 1
    logger.info("Tenant %s imported %s subscribers (%s skipped)", tenant_id, created, skipped)
    return created, skipped


# ---------------------------------------------------------------------------
# Double opt-in
# ---------------------------------------------------------------------------


def _issue_confirmation(db: Session, subscriber: models.Subscriber) -> str:
    from mailroom.queue.worker import enqueue_confirmation_email
    from mailroom.db.session import on_commit

    token = secrets.token_hex(32)
    subscriber.confirmation_token = token
    subscriber.confirmation_sent_at = utcnow()
    subscriber.confirmed = False
    email, first_name = subscriber.email, subscriber.first_name
    on_commit(db, lambda: enqueue_confirmation_email(recipient=email, first_name=first_name, token=token))
    return token


def subscribe_public(
    db: Session,
    tenant_id: int,
    *,
    email: str,
    first_name: str | None = None,
    last_name: str | None = None,
    list_ids: Iterable[int] = (),
) -> tuple[models.Subscriber, str]:
    """Public signup form. Returns the subscriber and one of
    ``already_confirmed``, ``confirmation_resent`` or ``confirmation_sent``."""

    lists = resolve_references(db, models.MailingList, tenant_id, list_ids, "List")
    existing = find_subscriber_by_email(db, tenant_id, email)
    if existing is not None and existing.confirmed and existing.status == "active":
        return existing, "already_confirmed"

    with atomic(db):
        if existing is not None:
            subscriber = existing
            subscriber.first_name = first_name or subscriber.first_name
            subscriber.last_name = last_name or subscriber.last_name
            subscriber.status = "active"
            subscriber.consent_given = True
            subscriber.consent_at = utcnow()
            for mailing_list in lists:
                stage_membership(db, subscriber, mailing_list)
            outcome = "confirmation_resent"
        else:
            subscriber = stage_subscriber(
                db,
                tenant_id,
                email=email,
                first_name=first_name,
                last_name=last_name,
                lists=lists,
                consent_given=True,
            )
            outcome = "confirmation_sent"
        _issue_confirmation(db, subscriber)
    db.refresh(subscriber)
    return subscriber, outcome


def confirm_subscription(db: Session, token: str) -> models.Subscriber:
    if not token or len(token) != 64:
        raise NotFound("Invalid confirmation link")
    subscriber = db.execute(
        select(models.Subscriber).where(models.Subscriber.confirmation_token == token)
    ).scalar_one_or_none()
    if subscriber is None:
        raise NotFound("Invalid confirmation link")
    sent_at = as_utc(subscriber.confirmation_sent_at)
    if sent_at is None or utcnow() - sent_at > timedelta(days=settings.confirmation_token_ttl_days):
        raise NotFound("Confirmation link has expired")

    with atomic(db):
        subscriber.confirmed = True
        subscriber.confirmed_at = utcnow()
        subscriber.confirmation_token = None
    db.refresh(subscriber)
    return subscriber


def unsubscribe(db: Session, tenant_id: int, subscriber_id: int) -> models.Subscriber:
    """Unsubscribe outside of any campaign context."""

    subscriber = get_subscriber(db, tenant_id, subscriber_id)
    with atomic(db):
        if subscriber.status == "active":
            subscriber.status = "unsubscribed"
    db.refresh(subscriber)
    return subscriber
