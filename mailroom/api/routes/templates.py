"""Email template endpoints."""
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from mailroom.api.deps import current_tenant_id
from mailroom.db.session import get_db
from mailroom.services import templates as template_service
from mailroom.services.template_engine import render_string

router = APIRouter(prefix="/templates", tags=["templates"])

SAMPLE_CONTEXT = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "email": "ada@example.com",
    "campaign_name": "Preview",
    "unsubscribe_url": "#unsubscribe",
    "web_version_url": "#web-version",
}


class TemplateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    subject: str = Field(min_length=1, max_length=255)
    html_content: str
    text_content: str | None = None
    thumbnail_url: str | None = None


class TemplateUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    subject: str | None = None
    html_content: str | None = None
    text_content: str | None = None
    thumbnail_url: str | None = None


class TemplateResponse(BaseModel):
    id: int
    tenant_id: int
    name: str
    subject: str
    html_content: str
    text_content: str | None = None
    thumbnail_url: str | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class TemplatePreview(BaseModel):
    subject: str
    html: str


@router.post("/", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
def create_template(
    payload: TemplateCreate, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> TemplateResponse:
    template = template_service.create_template(db, tenant_id, **payload.model_dump())
    return TemplateResponse.model_validate(template)


@router.get("/", response_model=list[TemplateResponse])
def list_templates(
    tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> list[TemplateResponse]:
    return [TemplateResponse.model_validate(t) for t in template_service.list_templates(db, tenant_id)]


@router.get("/{template_id}", response_model=TemplateResponse)
def get_template(
    template_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> TemplateResponse:
    return TemplateResponse.model_validate(template_service.get_template(db, tenant_id, template_id))


@router.patch("/{template_id}", response_model=TemplateResponse)
def update_template(
    template_id: int,
    payload: TemplateUpdate,
    tenant_id: int = Depends(current_tenant_id),
    db: Session = Depends(get_db),
) -> TemplateResponse:
    template = template_service.update_template(db, tenant_id, template_id, **payload.model_dump(exclude_unset=True))
    return TemplateResponse.model_validate(template)


@router.post("/{template_id}/duplicate", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
def duplicate_template(
    template_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> TemplateResponse:
    return TemplateResponse.model_validate(template_service.duplicate_template(db, tenant_id, template_id))


@router.get("/{template_id}/preview", response_model=TemplatePreview)
def preview_template(
    template_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> TemplatePreview:
    """Render the template with sample merge-tag values."""

    template = template_service.get_template(db, tenant_id, template_id)
    return TemplatePreview(
        subject=render_string(template.subject, html=False, **SAMPLE_CONTEXT),
        html=render_string(template.html_content, **SAMPLE_CONTEXT),
    )


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def delete_template(
    template_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> Response:
    template_service.delete_template(db, tenant_id, template_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
