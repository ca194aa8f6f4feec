"""Mailing list endpoints."""
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from mailroom.api.deps import current_tenant_id
from mailroom.api.routes.subscribers import SubscriberResponse, to_response
from mailroom.db.session import get_db
from mailroom.services import audience

router = APIRouter(prefix="/lists", tags=["lists"])


class ListCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None


class ListUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None


class ListResponse(BaseModel):
    id: int
    tenant_id: int
    name: str
    description: str | None = None
    subscriber_count: int
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


@router.post("/", response_model=ListResponse, status_code=status.HTTP_201_CREATED)
def create_list(
    payload: ListCreate, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> ListResponse:
    mailing_list = audience.create_list(db, tenant_id, name=payload.name, description=payload.description)
    return ListResponse.model_validate(mailing_list)


@router.get("/", response_model=list[ListResponse])
def list_lists(tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)) -> list[ListResponse]:
    return [ListResponse.model_validate(item) for item in audience.list_lists(db, tenant_id)]


@router.get("/{list_id}", response_model=ListResponse)
def get_list(list_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)) -> ListResponse:
    return ListResponse.model_validate(audience.get_list(db, tenant_id, list_id))


@router.patch("/{list_id}", response_model=ListResponse)
def update_list(
    list_id: int, payload: ListUpdate, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> ListResponse:
    mailing_list = audience.update_list(db, tenant_id, list_id, name=payload.name, description=payload.description)
    return ListResponse.model_validate(mailing_list)


@router.delete("/{list_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def delete_list(list_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)) -> Response:
    audience.delete_list(db, tenant_id, list_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{list_id}/subscribers", response_model=list[SubscriberResponse])
def list_members(
    list_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> list[SubscriberResponse]:
    return [to_response(db, subscriber) for subscriber in audience.list_members(db, tenant_id, list_id)]
