"""Tenant email templates."""
from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mailroom.core.errors import ConstraintViolation
from mailroom.db import models
from mailroom.db.session import atomic
from mailroom.services.isolation import get_owned
from mailroom.services.template_engine import validate_source


def get_template(db: Session, tenant_id: int, template_id: int) -> models.Template:
    return get_owned(db, models.Template, tenant_id, template_id, "Template")


def list_templates(db: Session, tenant_id: int) -> list[models.Template]:
    return list(
        db.execute(
            select(models.Template)
            .where(models.Template.tenant_id == tenant_id)
            .order_by(models.Template.updated_at.desc(), models.Template.id.desc())
        ).scalars()
    )


def _save(db: Session, template: models.Template) -> models.Template:
    try:
        with atomic(db):
            db.add(template)
    except IntegrityError as exc:
        raise ConstraintViolation(f"A template named {template.name!r} already exists") from exc
    db.refresh(template)
    return template


def create_template(
    db: Session,
    tenant_id: int,
    *,
    name: str,
    subject: str,
    html_content: str,
    text_content: str | None = None,
    thumbnail_url: str | None = None,
) -> models.Template:
    validate_source(html_content)
    if text_content:
        validate_source(text_content)
    template = models.Template(
        tenant_id=tenant_id,
        name=name.strip(),
        subject=subject,
        html_content=html_content,
        text_content=text_content,
        thumbnail_url=thumbnail_url,
    )
    return _save(db, template)


def update_template(db: Session, tenant_id: int, template_id: int, **changes) -> models.Template:
    template = get_template(db, tenant_id, template_id)
    for field in ("name", "subject", "html_content", "text_content", "thumbnail_url"):
        value = changes.get(field)
        if value is None:
            continue
        if field in ("html_content", "text_content"):
            validate_source(value)
        setattr(template, field, value.strip() if field == "name" else value)
    return _save(db, template)


def duplicate_template(db: Session, tenant_id: int, template_id: int) -> models.Template:
    source = get_template(db, tenant_id, template_id)
    taken = set(
        db.execute(select(models.Template.name).where(models.Template.tenant_id == tenant_id)).scalars()
    )
    name = f"{source.name} (Copy)"
    counter = 2
    while name in taken:
        name = f"{source.name} (Copy {counter})"
        counter += 1
    copy = models.Template(
        tenant_id=tenant_id,
        name=name,
        subject=source.subject,
        html_content=source.html_content,
        text_content=source.text_content,
        thumbnail_url=source.thumbnail_url,
    )
    return _save(db, copy)


def delete_template(db: Session, tenant_id: int, template_id: int) -> None:
    """Delete a template. Campaigns using it keep existing without one."""
    template = get_template(db, tenant_id, template_id)
    with atomic(db):
        db.execute(
            update(models.Campaign)
            .where(models.Campaign.template_id == template.id, models.Campaign.tenant_id == tenant_id)
            .values(template_id=None)
        )
        db.delete(template)
