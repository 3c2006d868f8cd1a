# -*- coding: utf-8 -*-
# backend/app/models/game_models.py
# =============================================================================
# Purpose:
#   ORM models of the game domain (written by the game service, read here):
#   • GameSession    one finished round; `score` feeds the coins ranking.
#   • DailyActivity  per-user, per-UTC-day XP aggregate; feeds the weekly
#                    level ranking.
#
# Invariants:
#   • game_sessions.score is NOT NULL; a user without rounds ranks with 0.
#   • daily_activity is unique per (user_id, date).
# =============================================================================

from __future__ import annotations

import uuid
import datetime as dt
from typing import Any, Dict, Optional

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database_core import Base, JSONDocument
from ..core.utils_core import utcnow


def _uuid_str() -> str:
    return str(uuid.uuid4())


class GameSession(Base):
    __tablename__ = "game_sessions"
    __table_args__ = (
        Index("ix_game_sessions_user_created", "user_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    user_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
    )
    game_mode: Mapped[str] = mapped_column(String(32), nullable=False)
    n_level: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    accuracy: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    config_snapshot: Mapped[Dict[str, Any]] = mapped_column(JSONDocument, nullable=False, default=dict)
    avg_reaction_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )


class DailyActivity(Base):
    """XP earned by one user on one UTC calendar day."""

    __tablename__ = "daily_activity"
    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_daily_activity_user_date"),
        Index("ix_daily_activity_date_user", "date", "user_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    user_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    total_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    sessions_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    updated_at: Mapped[Optional[dt.datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )


__all__ = ["GameSession", "DailyActivity"]
