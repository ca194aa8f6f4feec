"""Tenant ownership checks shared by every service.

Two rules apply:

* Rows addressed directly by the caller (``GET /campaigns/7``) are looked up
  inside the caller's tenant. Someone else's row is indistinguishable from a
  missing one and yields :class:`NotFound`.
* Rows referenced by a write (attaching template 7 to a campaign) are looked
  up globally first. A foreign row raises :class:`TenantMismatch` instead of
  being filtered away, so a leaked id shows up as an error.
"""
from __future__ import annotations

from typing import Iterable, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from mailroom.core.errors import NotFound, TenantMismatch
from mailroom.utils.logger import logger

T = TypeVar("T")


def get_owned(db: Session, model: type[T], tenant_id: int, entity_id: int, label: str) -> T:
    """Fetch a row by id inside ``tenant_id``."""
    row = db.execute(
        select(model).where(model.id == entity_id, model.tenant_id == tenant_id)  # type: ignore[attr-defined]
    ).scalar_one_or_none()
    if row is None:
        raise NotFound(f"{label} {entity_id} not found")
    return row


def resolve_reference(db: Session, model: type[T], tenant_id: int, entity_id: int, label: str) -> T:
    """Resolve a row another row is about to point at."""
    row = db.get(model, entity_id)
    if row is None:
        raise NotFound(f"{label} {entity_id} not found")
    if row.tenant_id != tenant_id:  # type: ignore[attr-defined]
        logger.warning(
            "Rejected cross-tenant reference to %s %s from tenant %s", label, entity_id, tenant_id
        )
        raise TenantMismatch(f"{label} {entity_id} belongs to another tenant")
    return row


def resolve_references(db: Session, model: type[T], tenant_id: int, entity_ids: Iterable[int], label: str) -> list[T]:
    return [resolve_reference(db, model, tenant_id, entity_id, label) for entity_id in dict.fromkeys(entity_ids)]


def ensure_same_tenant(expected_tenant_id: int, actual_tenant_id: int, label: str) -> None:
    if expected_tenant_id != actual_tenant_id:
        raise TenantMismatch(f"{label} belongs to another tenant")
