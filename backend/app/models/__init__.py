# -*- coding: utf-8 -*-
# backend/app/models/__init__.py
# =============================================================================
# Purpose:
#   Entry point of the model layer:
#   • imports every model module so Base.metadata is complete (Alembic,
#     create_all in tests);
#   • MODEL_REGISTRY: table name → model class.
# =============================================================================

from __future__ import annotations

from typing import Dict, Type

from ..core.database_core import Base
from .flags_models import FeatureFlag
from .game_models import DailyActivity, GameSession
from .rating_models import AdvisoryLockRow, LeaderboardSnapshot
from .user_models import AuthSession, User

MODEL_REGISTRY: Dict[str, Type[Base]] = {
    model.__tablename__: model
    for model in (
        User,
        AuthSession,
        GameSession,
        DailyActivity,
        FeatureFlag,
        LeaderboardSnapshot,
        AdvisoryLockRow,
    )
}

__all__ = [
    "Base",
    "MODEL_REGISTRY",
    "User",
    "AuthSession",
    "GameSession",
    "DailyActivity",
    "FeatureFlag",
    "LeaderboardSnapshot",
    "AdvisoryLockRow",
]
