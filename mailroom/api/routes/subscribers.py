"""Subscriber management endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from mailroom.api.deps import current_tenant_id
from mailroom.db import models
from mailroom.db.session import get_db
from mailroom.services import audience

router = APIRouter(prefix="/subscribers", tags=["subscribers"])


class SubscriberCreate(BaseModel):
    email: EmailStr
    first_name: str | None = None
    last_name: str | None = None
    status: str = "active"
    list_ids: list[int] = Field(default_factory=list)
    metadata: dict[str, Any] | None = None
    consent_given: bool = False


class SubscriberUpdate(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    status: str | None = None
    metadata: dict[str, Any] | None = None
    list_ids: list[int] | None = None


class SubscriberResponse(BaseModel):
    id: int
    tenant_id: int
    email: str
    first_name: str | None = None
    last_name: str | None = None
    status: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    list_ids: list[int] = Field(default_factory=list)
    consent_given: bool
    confirmed: bool
    created_at: datetime | None = None


class BulkImportRequest(BaseModel):
    csv_text: str
    list_ids: list[int] = Field(default_factory=list)


class BulkImportResponse(BaseModel):
    imported: int
    skipped: int


def to_response(db: Session, subscriber: models.Subscriber) -> SubscriberResponse:
    return SubscriberResponse(
        id=subscriber.id,
        tenant_id=subscriber.tenant_id,
        email=subscriber.email,
        first_name=subscriber.first_name,
        last_name=subscriber.last_name,
        status=subscriber.status,
        metadata=subscriber.custom_fields or {},
        list_ids=audience.subscriber_list_ids(db, subscriber),
        consent_given=subscriber.consent_given,
        confirmed=subscriber.confirmed,
        created_at=subscriber.created_at,
    )


@router.post("/", response_model=SubscriberResponse, status_code=status.HTTP_201_CREATED)
def add_subscriber(
    payload: SubscriberCreate, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> SubscriberResponse:
    """Add a subscriber, optionally straight onto some lists."""

    subscriber = audience.create_subscriber(
        db,
        tenant_id,
        email=payload.email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        status=payload.status,
        list_ids=payload.list_ids,
        custom_fields=payload.metadata,
        consent_given=payload.consent_given,
    )
    return to_response(db, subscriber)


@router.get("/", response_model=list[SubscriberResponse])
def list_subscribers(
    status_filter: str | None = Query(default=None, alias="status"),
    list_id: int | None = Query(default=None),
    tenant_id: int = Depends(current_tenant_id),
    db: Session = Depends(get_db),
) -> list[SubscriberResponse]:
    subscribers = audience.list_subscribers(db, tenant_id, status=status_filter, list_id=list_id)
    return [to_response(db, s) for s in subscribers]


@router.get("/{subscriber_id}", response_model=SubscriberResponse)
def get_subscriber(
    subscriber_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> SubscriberResponse:
    return to_response(db, audience.get_subscriber(db, tenant_id, subscriber_id))


@router.patch("/{subscriber_id}", response_model=SubscriberResponse)
def update_subscriber(
    subscriber_id: int,
    payload: SubscriberUpdate,
    tenant_id: int = Depends(current_tenant_id),
    db: Session = Depends(get_db),
) -> SubscriberResponse:
    subscriber = audience.update_subscriber(
        db,
        tenant_id,
        subscriber_id,
        first_name=payload.first_name,
        last_name=payload.last_name,
        status=payload.status,
        custom_fields=payload.metadata,
        list_ids=payload.list_ids,
    )
    return to_response(db, subscriber)


@router.delete("/{subscriber_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def delete_subscriber(
    subscriber_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> Response:
    audience.delete_subscriber(db, tenant_id, subscriber_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{subscriber_id}/lists/{list_id}", response_model=SubscriberResponse)
def add_to_list(
    subscriber_id: int, list_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> SubscriberResponse:
    audience.add_to_list(db, tenant_id, subscriber_id, list_id)
    return to_response(db, audience.get_subscriber(db, tenant_id, subscriber_id))


@router.delete("/{subscriber_id}/lists/{list_id}", response_model=SubscriberResponse)
def remove_from_list(
    subscriber_id: int, list_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> SubscriberResponse:
    audience.remove_from_list(db, tenant_id, subscriber_id, list_id)
    return to_response(db, audience.get_subscriber(db, tenant_id, subscriber_id))


@router.post("/{subscriber_id}/unsubscribe", response_model=SubscriberResponse)
def unsubscribe(
    subscriber_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> SubscriberResponse:
    return to_response(db, audience.unsubscribe(db, tenant_id, subscriber_id))


@router.post("/bulk-import", response_model=BulkImportResponse)
def bulk_import_subscribers(
    payload: BulkImportRequest, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> BulkImportResponse:
    """Import subscribers from CSV text (columns: email, first_name, last_name)."""

    created, skipped = audience.import_csv(db, tenant_id, payload.csv_text, payload.list_ids)
    return BulkImportResponse(imported=created, skipped=skipped)
