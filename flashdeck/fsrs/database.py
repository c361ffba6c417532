"""
Database - Engine and Transaction Management

Owns the SQLAlchemy engine and hands out sessions/transactions.
Card Store queries live in flashdeck.card_store; algorithm logic lives in
the scheduler module.
"""

from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from flashdeck import settings
from flashdeck.errors import StorageError
from flashdeck.fsrs.models import Base

logger = logging.getLogger(__name__)

REQUIRED_TABLES = frozenset(Base.metadata.tables.keys())

# Engine and session factory are created lazily and reused across requests
_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def get_engine() -> Engine:
    """
    Get the shared SQLAlchemy engine (created on first use).

    Uses connection pooling for better performance.

    Returns:
        SQLAlchemy Engine instance
    """
    global _engine, _session_factory

    if _engine is not None:
        return _engine

    db_url = settings.get_database_url()
    _engine = create_engine(
        db_url,
        pool_size=5,           # Keep 5 connections open
        max_overflow=10,       # Allow up to 10 extra connections
        pool_pre_ping=True,    # Verify connections before use
        echo=False
    )
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)
    return _engine


def set_engine(engine: Optional[Engine]) -> None:
    """
    Replace the shared engine (tests, scripts). Passing None resets it.
    """
    global _engine, _session_factory
    _engine = engine
    _session_factory = sessionmaker(bind=engine, expire_on_commit=False) if engine is not None else None


def get_session() -> Session:
    """
    Get a SQLAlchemy session for database operations.

    Returns:
        SQLAlchemy Session instance
    """
    if _session_factory is None:
        get_engine()
    return _session_factory()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    One transaction: commit on success, roll back on any exception.

    Store failures are re-raised as StorageError; domain errors raised
    inside the block propagate unchanged.
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Database transaction failed", exc_info=True)
        raise StorageError(f"Storage failure: {exc.__class__.__name__}") from exc
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db() -> None:
    """
    Initialize database schema if tables don't exist.

    Safe to call multiple times - only creates missing tables.
    """
    engine = get_engine()
    existing_tables = set(inspect(engine).get_table_names())

    missing = REQUIRED_TABLES - existing_tables
    if missing:
        Base.metadata.create_all(engine)
        logger.info("Created tables: %s", ", ".join(sorted(missing)))


def reset_db() -> None:
    """
    DANGEROUS: Delete all data and recreate tables.

    Only use this for testing or when you want to start fresh.
    All review history will be lost!
    """
    engine = get_engine()
    Base.metadata.drop_all(engine)
    logger.warning("All tables dropped")

    init_db()
