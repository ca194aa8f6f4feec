"""SQLAlchemy session handling utilities."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from mailroom.core.config import settings


def enable_sqlite_foreign_keys(target: Engine) -> None:
    """SQLite ignores FOREIGN KEY clauses unless switched on per connection."""

    @event.listens_for(target, "connect")
    def _set_pragma(dbapi_connection, connection_record):  # noqa: ARG001
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    kwargs: dict = {"future": True, "pool_pre_ping": True}
    connect_args: dict = {}
    if url.drivername.startswith("postgresql+psycopg"):
        connect_args["sslmode"] = "require"
    if url.get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
        if url.database in (None, "", ":memory:"):
            # One shared connection so every session sees the same in-memory database.
            kwargs["poolclass"] = StaticPool
    built = create_engine(database_url, connect_args=connect_args, **kwargs)
    if url.get_backend_name() == "sqlite":
        enable_sqlite_foreign_keys(built)
    return built


# The engine is created once and reused for all requests.
engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Iterator[Session]:
    """FastAPI dependency that yields a scoped session."""

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Context manager for scripts/CLI tools."""

    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Commit everything done inside the block, or roll all of it back."""

    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def dialect_name(db: Session) -> str:
    return db.get_bind().dialect.name


def on_commit(db: Session, callback: Callable[[], None]) -> None:
    """Run ``callback`` once the current transaction commits; drop it on rollback."""

    db.info.setdefault("after_commit", []).append(callback)


@event.listens_for(Session, "after_commit")
def _run_after_commit(session: Session) -> None:
    for callback in session.info.pop("after_commit", []):
        callback()


@event.listens_for(Session, "after_soft_rollback")
def _discard_after_commit(session: Session, previous_transaction) -> None:  # noqa: ARG001
    session.info.pop("after_commit", None)
