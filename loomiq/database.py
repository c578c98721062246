"""Database engine and session management for the SQL task store."""

import logging
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from .config import DatabaseSettings, get_settings
from .schemas.database import TaskRecord  # noqa: F401  registers the table


logger = logging.getLogger(__name__)


def create_db_engine(settings: DatabaseSettings | None = None) -> Engine:
    """Create an engine for the configured database URL.

    In-memory SQLite URLs share a single connection so every session sees
    the same database.
    """
    settings = settings or get_settings().database
    kwargs = {}
    if settings.url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if settings.url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool

    return create_engine(settings.url, echo=settings.echo_sql, **kwargs)


def create_db_and_tables(engine: Engine) -> None:
    """Create all tables. Safe to call multiple times."""
    SQLModel.metadata.create_all(engine)
    logger.info(f"Database initialized at: {engine.url}")


@contextmanager
def get_session_context(engine: Engine) -> Generator[Session, None, None]:
    """Context manager for database sessions with automatic cleanup.

    Usage:
        with get_session_context(engine) as session:
            # Use session here
            pass

    """
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
