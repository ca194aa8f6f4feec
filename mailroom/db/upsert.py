"""Dialect-aware ``INSERT ... ON CONFLICT DO NOTHING``."""
from __future__ import annotations

from typing import Any, Sequence

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from mailroom.db.session import dialect_name


def insert_ignore(db: Session, model: type, values: dict[str, Any], conflict_columns: Sequence[str]) -> int | None:
    """Insert a row unless it collides on ``conflict_columns``.

    Returns the new primary key, or ``None`` when a row with the same key
    already existed (including one inserted concurrently by another writer).
    Other integrity errors, such as a dangling foreign key, still raise.
    """
    builder = pg_insert if dialect_name(db) == "postgresql" else sqlite_insert
    statement = (
        builder(model)
        .values(**values)
        .on_conflict_do_nothing(index_elements=list(conflict_columns))
        .returning(model.id)
    )
    return db.execute(statement).scalar_one_or_none()
