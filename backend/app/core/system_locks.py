# -*- coding: utf-8 -*-
# backend/app/core/system_locks.py
# =============================================================================
# Purpose:
#   Cross-process mutual exclusion for snapshot rebuilds.
#
#   AdvisoryLock is a capability: try_acquire(session, name) -> bool.
#   • True  → the lock is held until the session's transaction ends
#             (commit, rollback or lost connection release it);
#   • False → somebody else holds it right now. The call does not wait
#             (see LockTableSkipLock for the one unseeded-row exception).
#
# Implementations:
#   • PgAdvisoryXactLock   pg_try_advisory_xact_lock(hashtext(:name))
#   • LockTableSkipLock    SELECT ... FOR UPDATE SKIP LOCKED on advisory_locks,
#                          for engines without native advisory locks. Rows
#                          for the ranking kinds are seeded by migration
#                          0003; a name without a row is inserted on first
#                          use, and only that insert can wait on a
#                          concurrent first inserter.
#
# Rules:
#   • Callers must already be inside a transaction; the lock lives as long
#     as that transaction.
#   • There is no explicit release: a stuck lock cannot outlive its
#     transaction or its process.
# =============================================================================

from __future__ import annotations

from typing import Optional

from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config_core import get_settings
from backend.app.core.logging_core import get_logger
from backend.app.models.rating_models import AdvisoryLockRow

logger = get_logger(__name__)
settings = get_settings()


class AdvisoryLock:
    """Non-blocking, transaction-scoped named lock."""

    backend: str = "abstract"

    async def try_acquire(self, session: AsyncSession, name: str) -> bool:
        raise NotImplementedError


class PgAdvisoryXactLock(AdvisoryLock):
    """
    PostgreSQL transaction-level advisory lock keyed by hashtext(name).

    hashtext() collisions between two different names only cause a spurious
    "busy" answer, never a double writer.
    """

    backend = "advisory"

    async def try_acquire(self, session: AsyncSession, name: str) -> bool:
        rs = await session.execute(
            text("SELECT pg_try_advisory_xact_lock(hashtext(:name))"),
            {"name": name},
        )
        return bool(rs.scalar_one_or_none())


class LockTableSkipLock(AdvisoryLock):
    """
    Row lock on advisory_locks(name).

    A seeded row is locked with SKIP LOCKED: a row we cannot see through
    SKIP LOCKED but that exists is held by someone else ("busy"). An unseeded
    name is inserted inside a savepoint; losing that insert race
    (IntegrityError) is also "busy".
    """

    backend = "table"

    async def try_acquire(self, session: AsyncSession, name: str) -> bool:
        locked = await session.scalar(
            select(AdvisoryLockRow.name)
            .where(AdvisoryLockRow.name == name)
            .with_for_update(skip_locked=True)
        )
        if locked is not None:
            return True

        # Either the row does not exist yet, or SKIP LOCKED hid it.
        exists = await session.scalar(
            select(func.count()).select_from(AdvisoryLockRow).where(AdvisoryLockRow.name == name)
        )
        if exists:
            return False

        try:
            async with session.begin_nested():
                session.add(AdvisoryLockRow(name=name))
        except IntegrityError:
            return False
        return True


def advisory_lock_for(session: AsyncSession, backend: Optional[str] = None) -> AdvisoryLock:
    """
    Pick the lock implementation: LOCK_BACKEND setting, or by dialect when
    it is "auto" (PostgreSQL → advisory, anything else → table).
    """
    choice = (backend or settings.LOCK_BACKEND or "auto").lower()
    if choice == "auto":
        dialect = session.get_bind().dialect.name
        choice = "advisory" if dialect == "postgresql" else "table"
    if choice == "advisory":
        return PgAdvisoryXactLock()
    return LockTableSkipLock()


def lock_name(kind: str) -> str:
    """Lock name of a ranking kind: 'leaderboard:coins:all'."""
    return f"leaderboard:{kind}"


__all__ = [
    "AdvisoryLock",
    "PgAdvisoryXactLock",
    "LockTableSkipLock",
    "advisory_lock_for",
    "lock_name",
]
