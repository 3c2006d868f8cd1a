# -*- coding: utf-8 -*-
# backend/app/schemas/leaderboard_schemas.py
# =============================================================================
# Purpose:
#   Response DTOs of the leaderboard API. Python attributes are snake_case,
#   JSON keys are camelCase (serialize with by_alias=True).
#
# Rules:
#   • One entry model for every board; metrics a board does not have are
#     simply absent from its JSON (exclude_unset).
#   • medal is derived from rank, never stored.
# =============================================================================

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LeaderboardEntryOut(_CamelModel):
    rank: int
    user_id: str
    display_name: str = ""
    avatar_url: Optional[str] = None
    total_score: Optional[int] = None
    brain_level: Optional[int] = None
    xp: Optional[int] = None
    brain_coins: Optional[int] = None
    weekly_xp: Optional[int] = None
    medal: Optional[str] = None


class LeaderboardConfigOut(_CamelModel):
    top_n: int = Field(..., ge=1, le=100)
    version: int = Field(..., ge=1)


class LeaderboardOut(_CamelModel):
    kind: str
    scope: str
    computed_at: str
    config: LeaderboardConfigOut
    entries: List[LeaderboardEntryOut]


class MyRankOut(_CamelModel):
    kind: str
    scope: str
    computed_at: Optional[str] = None
    my_rank: Optional[int] = None
    my_entry: Optional[LeaderboardEntryOut] = None


class HealthOut(BaseModel):
    status: str
    db: str
    env: str
    version: str


__all__ = [
    "LeaderboardEntryOut",
    "LeaderboardConfigOut",
    "LeaderboardOut",
    "MyRankOut",
    "HealthOut",
]
