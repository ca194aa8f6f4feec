"""Per-tenant suppression list."""
from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from mailroom.core.errors import ConstraintViolation
from mailroom.db import models
from mailroom.db.session import atomic
from mailroom.services.isolation import get_owned
from mailroom.utils.logger import logger


def normalize_domain(domain: str) -> str:
    return domain.strip().lower().lstrip("@").rstrip(".")


def email_domain(email: str) -> str:
    return email.rsplit("@", 1)[-1].lower()


@dataclass
class SuppressionIndex:
    """In-memory view of a tenant's suppression entries."""

    emails: set[str] = field(default_factory=set)
    domains: set[str] = field(default_factory=set)

    def matches(self, email: str) -> bool:
        email = email.strip().lower()
        if email in self.emails:
            return True
        domain = email_domain(email)
        if domain in self.domains:
            return True
        # Subdomains of a suppressed domain are suppressed too.
        parts = domain.split(".")
        return any(".".join(parts[i:]) in self.domains for i in range(1, len(parts)))


def load_index(db: Session, tenant_id: int) -> SuppressionIndex:
    index = SuppressionIndex()
    rows = db.execute(
        select(models.SuppressionEntry.email, models.SuppressionEntry.domain).where(
            models.SuppressionEntry.tenant_id == tenant_id
        )
    ).all()
    for email, domain in rows:
        if email:
            index.emails.add(email.lower())
        if domain:
            index.domains.add(normalize_domain(domain))
    return index


def is_suppressed(db: Session, tenant_id: int, email: str) -> bool:
    return load_index(db, tenant_id).matches(email)


def _find_existing(db: Session, tenant_id: int, email: str | None, domain: str | None) -> models.SuppressionEntry | None:
    query = select(models.SuppressionEntry).where(models.SuppressionEntry.tenant_id == tenant_id)
    if email is not None:
        query = query.where(models.SuppressionEntry.email == email)
    else:
        query = query.where(models.SuppressionEntry.email.is_(None))
    if domain is not None:
        query = query.where(models.SuppressionEntry.domain == domain)
    else:
        query = query.where(models.SuppressionEntry.domain.is_(None))
    return db.execute(query.limit(1)).scalar_one_or_none()


def stage_suppression(db: Session, tenant_id: int, *, email: str | None, reason: str) -> models.SuppressionEntry:
    """Add an email entry inside the caller's transaction unless one exists."""

    email = email.strip().lower() if email else None
    existing = db.execute(
        select(models.SuppressionEntry)
        .where(models.SuppressionEntry.tenant_id == tenant_id, models.SuppressionEntry.email == email)
        .limit(1)
    ).scalar_one_or_none()
    if existing is not None:
        return existing
    entry = models.SuppressionEntry(tenant_id=tenant_id, email=email, reason=reason)
    db.add(entry)
    db.flush()
    logger.info("Suppressed %s for tenant %s (%s)", email, tenant_id, reason)
    return entry


def add_suppression(
    db: Session,
    tenant_id: int,
    *,
    email: str | None = None,
    domain: str | None = None,
    reason: str = "manual",
) -> models.SuppressionEntry:
    email = email.strip().lower() if email else None
    domain = normalize_domain(domain) if domain else None
    if not email and not domain:
        raise ConstraintViolation("Either email or domain must be provided")
    if reason not in models.SUPPRESSION_REASONS:
        raise ConstraintViolation(f"Unknown suppression reason {reason!r}")
    if _find_existing(db, tenant_id, email, domain) is not None:
        raise ConstraintViolation("Entry already suppressed")

    entry = models.SuppressionEntry(tenant_id=tenant_id, email=email, domain=domain, reason=reason)
    with atomic(db):
        db.add(entry)
    db.refresh(entry)
    return entry


def list_suppression(db: Session, tenant_id: int) -> list[models.SuppressionEntry]:
    return list(
        db.execute(
            select(models.SuppressionEntry)
            .where(models.SuppressionEntry.tenant_id == tenant_id)
            .order_by(models.SuppressionEntry.created_at.desc(), models.SuppressionEntry.id.desc())
        ).scalars()
    )


def remove_suppression(db: Session, tenant_id: int, entry_id: int) -> None:
    """Manual removal; entries are never removed automatically."""

    entry = get_owned(db, models.SuppressionEntry, tenant_id, entry_id, "Suppression entry")
    with atomic(db):
        db.delete(entry)
