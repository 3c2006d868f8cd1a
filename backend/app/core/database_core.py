# -*- coding: utf-8 -*-
# backend/app/core/database_core.py
# =============================================================================
# Purpose:
#   • Single entry point to the database (PostgreSQL + asyncpg + SQLAlchemy 2.0).
#   • AsyncEngine / async_sessionmaker creation and configuration.
#   • Session providers for FastAPI routes (get_db) and jobs (lifespan_session).
#   • Declarative Base shared by all ORM models.
#   • Health helpers (db_ping) and engine reset/dispose.
#   • Write tracking (has_pending_writes) for code that must not end a
#     caller's transaction that already wrote something.
#
# Invariants:
#   • Async engine only; the DSN comes from Settings.database_url_async().
#   • Sessions use expire_on_commit=False and autoflush=False.
#   • SQLite (tests, local runs) uses a StaticPool so an in-memory database
#     is shared by every session of the process.
#   • No business logic and no DDL here (Alembic owns DDL in production).
# =============================================================================

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, AsyncIterator, Dict, Optional

from sqlalchemy import JSON, MetaData, event, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Session
from sqlalchemy.pool import StaticPool

from backend.app.core.config_core import get_settings
from backend.app.core.logging_core import get_logger

logger = get_logger(__name__)
settings = get_settings()


# -----------------------------------------------------------------------------
# Declarative Base
# -----------------------------------------------------------------------------
NAMING_CONVENTION: Dict[str, str] = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Base class of every ORM model of the service."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


# -----------------------------------------------------------------------------
# Globals: engine and session factory
# -----------------------------------------------------------------------------
_engine: Optional[AsyncEngine] = None
_SessionFactory: Optional[async_sessionmaker[AsyncSession]] = None
_engine_lock = asyncio.Lock()


def _create_engine() -> AsyncEngine:
    """
    Build a new AsyncEngine from current settings.

    • PostgreSQL: pool_size / max_overflow from settings, pool_pre_ping on.
    • SQLite: StaticPool (pool sizing does not apply).
    • echo only in DEBUG.
    """
    dsn = settings.database_url_async()
    kwargs: Dict[str, Any] = {"echo": settings.DEBUG, "pool_pre_ping": True}
    if dsn.startswith("sqlite"):
        kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_size"] = settings.DB_POOL_SIZE
        kwargs["max_overflow"] = settings.DB_MAX_OVERFLOW
    logger.info(
        "Creating async DB engine",
        extra={"dialect": dsn.split(":", 1)[0]},
    )
    return create_async_engine(dsn, **kwargs)


def _create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
        class_=AsyncSession,
    )


async def reset_engine() -> None:
    """
    Recreate the engine and session factory, disposing the old engine.

    Used after fatal connection errors or a DSN change.
    """
    global _engine, _SessionFactory

    async with _engine_lock:
        old_engine = _engine
        try:
            new_engine = _create_engine()
        except Exception:
            logger.exception("Failed to reset DB engine")
            raise
        _SessionFactory = _create_session_factory(new_engine)
        _engine = new_engine
        logger.info("DB engine has been reset successfully")
        if old_engine is not None:
            await old_engine.dispose()


async def dispose_engine() -> None:
    """Close all pooled connections and forget the engine (app shutdown)."""
    global _engine, _SessionFactory

    async with _engine_lock:
        engine = _engine
        _engine = None
        _SessionFactory = None
        if engine is not None:
            await engine.dispose()
            logger.info("DB engine disposed")


def get_engine() -> AsyncEngine:
    """Return the current AsyncEngine, creating it lazily on first use."""
    global _engine, _SessionFactory

    if _engine is None:
        _engine = _create_engine()
        _SessionFactory = _create_session_factory(_engine)
        logger.info("DB engine lazily initialized")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _SessionFactory

    if _SessionFactory is None:
        _SessionFactory = _create_session_factory(get_engine())
    return _SessionFactory


# -----------------------------------------------------------------------------
# Session providers
# -----------------------------------------------------------------------------
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding one AsyncSession per request.

        SessionDep = Annotated[AsyncSession, Depends(get_db)]

    Commit is the caller's responsibility; DB errors are logged and re-raised.
    """
    session = get_session_factory()()
    try:
        yield session
    except SQLAlchemyError:
        logger.exception("DB session error")
        raise
    finally:
        await session.close()


@asynccontextmanager
async def lifespan_session() -> AsyncIterator[AsyncSession]:
    """
    Session for background jobs and scripts:

        async with lifespan_session() as db:
            ...

    Anything left uncommitted is rolled back on exit.
    """
    session = get_session_factory()()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


# -----------------------------------------------------------------------------
# Write tracking
# -----------------------------------------------------------------------------
_WROTE_KEY = "wrote_in_transaction"


@event.listens_for(Session, "after_flush")
def _remember_flush(session: Session, flush_context: Any) -> None:
    session.info[_WROTE_KEY] = True


@event.listens_for(Session, "do_orm_execute")
def _remember_dml(state: Any) -> None:
    # Core INSERT/UPDATE/DELETE through session.execute() never flushes.
    if state.is_insert or state.is_update or state.is_delete:
        state.session.info[_WROTE_KEY] = True


@event.listens_for(Session, "after_transaction_end")
def _forget_flush(session: Session, transaction: Any) -> None:
    if transaction.parent is None:
        session.info.pop(_WROTE_KEY, None)


def has_pending_writes(session: AsyncSession) -> bool:
    """
    True when the session holds unflushed changes, or has written rows
    (flush or DML statement) that its current transaction has not committed.
    """
    sync = session.sync_session
    return bool(sync.new or sync.dirty or sync.deleted or sync.info.get(_WROTE_KEY))


# -----------------------------------------------------------------------------
# Health-check
# -----------------------------------------------------------------------------
async def db_ping() -> bool:
    """True if SELECT 1 succeeds; False if the database is not reachable."""
    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except (OperationalError, DBAPIError, OSError, RuntimeError) as exc:
        logger.error("DB ping failed: DB is not reachable", extra={"error": type(exc).__name__})
        return False


__all__ = [
    "AsyncSession",
    "AsyncEngine",
    "Base",
    "JSONDocument",
    "get_engine",
    "get_session_factory",
    "get_db",
    "lifespan_session",
    "has_pending_writes",
    "db_ping",
    "reset_engine",
    "dispose_engine",
]
