# -*- coding: utf-8 -*-
# backend/app/models/user_models.py
# =============================================================================
# Purpose:
#   ORM models of the identity domain, owned by the auth service and read here:
#   • User         profile + game progress (xp, brain level, brain coins).
#   • AuthSession  active sessions referenced by the signed session cookie.
#
# Invariants:
#   • user.id is an opaque text id issued by the auth service.
#   • xp, brain_coins >= 0; brain_level >= 1.
#   • session.token is unique; a session is active while expiresAt > now().
#
# Notes:
#   • Column names follow the auth service schema ("createdAt", "expiresAt",
#     "userId" are camelCase in the database).
#   • This service never writes these tables outside of tests and seeds.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database_core import Base
from ..core.utils_core import utcnow


class User(Base):
    """
    Player profile.

    Fields used by the leaderboard:
      • name / image  display name and avatar URL;
      • xp            lifetime experience;
      • brain_level   level derived from xp by the game service;
      • brain_coins   spendable currency balance;
      • updated_at    last profile change (weekly tiebreak).
    """

    __tablename__ = "user"
    __table_args__ = (
        CheckConstraint("xp >= 0", name="xp_nonneg"),
        CheckConstraint("brain_level >= 1", name="brain_level_min"),
        CheckConstraint("brain_coins >= 0", name="brain_coins_nonneg"),
        Index("ix_user_level_xp_coins", "brain_level", "xp", "brain_coins"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)
    image: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    brain_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    brain_coins: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    created_at: Mapped[datetime] = mapped_column(
        "createdAt",
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        "updatedAt",
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<User id={self.id} level={self.brain_level} xp={self.xp}>"


class AuthSession(Base):
    """Session row created by the auth service at sign-in."""

    __tablename__ = "session"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    token: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    user_id: Mapped[str] = mapped_column(
        "userId",
        String(64),
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    expires_at: Mapped[datetime] = mapped_column("expiresAt", DateTime(timezone=True), nullable=False)
    ip_address: Mapped[Optional[str]] = mapped_column("ipAddress", String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column("userAgent", String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        "createdAt",
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        "updatedAt",
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )


__all__ = ["User", "AuthSession"]
