# -*- coding: utf-8 -*-
# backend/app/services/__init__.py
# =============================================================================
# Purpose:
#   Facade of the service layer:
#     from backend.app.services import get_leaderboard, rebuild_snapshot
#
# Rules:
#   • ranks_service     ranking engine (Aggregator, Rank Lookup, freshness);
#   • leaderboard_service  Query Handler, RankingConfig, cache headers.
#   • No import-time side effects besides module loading.
# =============================================================================

from __future__ import annotations

from .leaderboard_service import (  # noqa: F401
    LeaderboardView,
    MyRankView,
    RankingConfig,
    cache_control_for,
    get_leaderboard,
    get_my_coins_rank,
    get_my_level_rank,
    load_ranking_config,
    parse_ranking_config,
)
from .ranks_service import (  # noqa: F401
    COINS_ALL,
    LEVEL_ALL,
    LEVEL_WEEK,
    MyRank,
    RankingKind,
    is_fresh,
    lookup_coins_rank,
    lookup_level_rank,
    medal_for,
    rebuild_snapshot,
    resolve_kind,
)

__all__ = [
    "LeaderboardView",
    "MyRankView",
    "RankingConfig",
    "cache_control_for",
    "get_leaderboard",
    "get_my_coins_rank",
    "get_my_level_rank",
    "load_ranking_config",
    "parse_ranking_config",
    "COINS_ALL",
    "LEVEL_ALL",
    "LEVEL_WEEK",
    "MyRank",
    "RankingKind",
    "is_fresh",
    "lookup_coins_rank",
    "lookup_level_rank",
    "medal_for",
    "rebuild_snapshot",
    "resolve_kind",
]
