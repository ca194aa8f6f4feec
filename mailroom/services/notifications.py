"""In-app notifications for tenants."""
from __future__ import annotations

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from mailroom.db import models
from mailroom.db.session import atomic
from mailroom.services.isolation import get_owned


def stage_notification(db: Session, tenant_id: int, type_: str, message: str) -> models.Notification:
    if type_ not in models.NOTIFICATION_TYPES:
        raise ValueError(f"Unknown notification type {type_!r}")
    notification = models.Notification(tenant_id=tenant_id, type=type_, message=message)
    db.add(notification)
    return notification


def list_notifications(db: Session, tenant_id: int, *, unread_only: bool = False, limit: int = 50) -> list[models.Notification]:
    query = select(models.Notification).where(models.Notification.tenant_id == tenant_id)
    if unread_only:
        query = query.where(models.Notification.read.is_(False))
    query = query.order_by(models.Notification.created_at.desc(), models.Notification.id.desc()).limit(limit)
    return list(db.execute(query).scalars())


def unread_count(db: Session, tenant_id: int) -> int:
    return db.execute(
        select(func.count(models.Notification.id)).where(
            models.Notification.tenant_id == tenant_id, models.Notification.read.is_(False)
        )
    ).scalar_one()


def mark_read(db: Session, tenant_id: int, notification_id: int) -> models.Notification:
    notification = get_owned(db, models.Notification, tenant_id, notification_id, "Notification")
    with atomic(db):
        notification.read = True
    db.refresh(notification)
    return notification


def mark_all_read(db: Session, tenant_id: int) -> int:
    with atomic(db):
        result = db.execute(
            update(models.Notification)
            .where(models.Notification.tenant_id == tenant_id, models.Notification.read.is_(False))
            .values(read=True)
        )
    return result.rowcount


def delete_notification(db: Session, tenant_id: int, notification_id: int) -> None:
    notification = get_owned(db, models.Notification, tenant_id, notification_id, "Notification")
    with atomic(db):
        db.delete(notification)
