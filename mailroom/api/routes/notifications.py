"""Tenant notification feed."""
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from mailroom.api.deps import current_tenant_id
from mailroom.db.session import get_db
from mailroom.services import notifications

router = APIRouter(prefix="/notifications", tags=["notifications"])


class NotificationResponse(BaseModel):
    id: int
    type: str
    message: str
    read: bool
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


@router.get("/", response_model=list[NotificationResponse])
def list_notifications(
    unread_only: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    tenant_id: int = Depends(current_tenant_id),
    db: Session = Depends(get_db),
) -> list[NotificationResponse]:
    items = notifications.list_notifications(db, tenant_id, unread_only=unread_only, limit=limit)
    return [NotificationResponse.model_validate(item) for item in items]


@router.get("/unread-count", response_model=dict)
def unread_count(tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)) -> dict:
    return {"unread": notifications.unread_count(db, tenant_id)}


@router.post("/read-all", response_model=dict)
def mark_all_read(tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)) -> dict:
    return {"updated": notifications.mark_all_read(db, tenant_id)}


@router.post("/{notification_id}/read", response_model=NotificationResponse)
def mark_read(
    notification_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> NotificationResponse:
    return NotificationResponse.model_validate(notifications.mark_read(db, tenant_id, notification_id))


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def delete_notification(
    notification_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> Response:
    notifications.delete_notification(db, tenant_id, notification_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
