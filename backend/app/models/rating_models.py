# -*- coding: utf-8 -*-
# backend/app/models/rating_models.py
# =============================================================================
# Purpose:
#   ORM models owned by the leaderboard service:
#   • LeaderboardSnapshot  one cached top-N payload per ranking kind
#                          ("coins:all", "level:all", "level:week").
#   • AdvisoryLockRow      named lock rows for engines without native advisory
#                          locks (SELECT ... FOR UPDATE SKIP LOCKED).
#
# Invariants:
#   • At most one snapshot row per kind (primary key).
#   • A snapshot row is only written inside the transaction holding the
#     "leaderboard:<kind>" lock, and always replaced as a whole.
#   • Rows are never deleted in normal operation.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database_core import Base, JSONDocument
from ..core.utils_core import utcnow


class LeaderboardSnapshot(Base):
    """
    Cached ranking.

    payload:
        {
          "computedAt": "2026-01-05T10:00:00.000Z",
          "kind": "coins",
          "scope": "all",
          "config": {"topN": 10, "version": 1},
          "entries": [{"rank": 1, "userId": "...", ...}, ...]
        }
    """

    __tablename__ = "leaderboard_snapshots"

    kind: Mapped[str] = mapped_column(String(64), primary_key=True)
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    payload: Mapped[Dict[str, Any]] = mapped_column(JSONDocument, nullable=False, default=dict)


class AdvisoryLockRow(Base):
    """Row-lock target for the lock-table fallback; the row content is irrelevant."""

    __tablename__ = "advisory_locks"

    name: Mapped[str] = mapped_column(String(128), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )


__all__ = ["LeaderboardSnapshot", "AdvisoryLockRow"]
