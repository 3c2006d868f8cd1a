# -*- coding: utf-8 -*-
# backend/app/schemas/__init__.py
# =============================================================================
# Purpose:
#   Facade of the Pydantic response schemas:
#     from backend.app.schemas import LeaderboardOut, MyRankOut
#
# No business logic, no DB access; declarative DTOs only.
# =============================================================================

from __future__ import annotations

from .leaderboard_schemas import (  # noqa: F401
    HealthOut,
    LeaderboardConfigOut,
    LeaderboardEntryOut,
    LeaderboardOut,
    MyRankOut,
)

SCHEMAS_VERSION: str = "v1.0"

__all__ = [
    "SCHEMAS_VERSION",
    "HealthOut",
    "LeaderboardConfigOut",
    "LeaderboardEntryOut",
    "LeaderboardOut",
    "MyRankOut",
]
