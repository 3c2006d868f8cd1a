# -*- coding: utf-8 -*-
# backend/app/routes/leaderboard_routes.py
# =============================================================================
# Purpose:
#   Public leaderboard endpoints:
#   • GET /leaderboard/coins?scope=all          top-N by total game score
#   • GET /leaderboard/level?scope=all|week     top-N by brain level / weekly XP
#   • GET /leaderboard/coins/me                 live rank of the signed-in user
#   • GET /leaderboard/level/me?scope=all|week  same for the level board
#
# Rules:
#   • An unknown scope is rejected (400) by the first dependency, before the
#     feature flag or any other row is read.
#   • Public boards carry Cache-Control from the ranking config and a strong
#     ETag; a matching If-None-Match answers 304 without a body.
#   • "me" views are always "private, no-store" and carry no ETag.
#   • Errors are AppError subclasses, rendered by core/errors_core.
# =============================================================================

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.logging_core import get_logger
from backend.app.core.security_core import SessionUser, verify_session
from backend.app.deps import (
    etag_matches,
    get_db,
    get_optional_session_user,
    get_ranking_config,
    make_etag,
)
from backend.app.schemas.leaderboard_schemas import (
    LeaderboardConfigOut,
    LeaderboardEntryOut,
    LeaderboardOut,
    MyRankOut,
)
from backend.app.services.leaderboard_service import (
    PRIVATE_NO_STORE,
    LeaderboardView,
    MyRankView,
    RankingConfig,
    get_leaderboard,
    get_my_coins_rank,
    get_my_level_rank,
)
from backend.app.services.ranks_service import RankingKind, resolve_kind

logger = get_logger(__name__)
router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])

JSON_MEDIA_TYPE = "application/json"


# =============================================================================
# Scope dependencies (syntactic check, no DB access)
# =============================================================================
async def coins_kind(scope: str = Query("all", description="Only 'all' is supported")) -> RankingKind:
    return resolve_kind("coins", scope)


async def level_kind(scope: str = Query("all", description="'all' or 'week'")) -> RankingKind:
    return resolve_kind("level", scope)


# =============================================================================
# Helpers
# =============================================================================
async def _viewer_for(
    request: Request,
    db: AsyncSession,
    config: RankingConfig,
) -> Optional[SessionUser]:
    # Only guest-hiding boards care who is looking.
    if not (config.enabled and config.hide_guests):
        return None
    return await verify_session(db, request.headers)


def _leaderboard_response(request: Request, view: LeaderboardView) -> Response:
    body = LeaderboardOut(
        kind=view.kind,
        scope=view.scope,
        computed_at=view.computed_at,
        config=LeaderboardConfigOut(top_n=view.config["topN"], version=view.config["version"]),
        entries=[LeaderboardEntryOut.model_validate(entry) for entry in view.entries],
    ).model_dump_json(by_alias=True, exclude_unset=True).encode("utf-8")

    headers = {"Cache-Control": view.cache_control}
    if view.cache_control == PRIVATE_NO_STORE:
        return Response(content=body, media_type=JSON_MEDIA_TYPE, headers=headers)

    etag = make_etag(body)
    headers["ETag"] = etag
    if etag_matches(request.headers.get("if-none-match"), etag):
        return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers=headers)
    return Response(content=body, media_type=JSON_MEDIA_TYPE, headers=headers)


def _my_rank_response(view: MyRankView) -> Response:
    entry = LeaderboardEntryOut.model_validate(view.my_entry) if view.my_entry else None
    body = MyRankOut(
        kind=view.kind,
        scope=view.scope,
        computed_at=view.computed_at,
        my_rank=view.my_rank,
        my_entry=entry,
    ).model_dump_json(by_alias=True, exclude_unset=True)
    return Response(
        content=body,
        media_type=JSON_MEDIA_TYPE,
        headers={"Cache-Control": PRIVATE_NO_STORE},
    )


# =============================================================================
# GET /leaderboard/coins
# =============================================================================
@router.get(
    "/coins",
    response_model=LeaderboardOut,
    summary="Top-N by total game score",
)
async def get_coins_leaderboard(
    request: Request,
    kind: RankingKind = Depends(coins_kind),
    config: RankingConfig = Depends(get_ranking_config),
    db: AsyncSession = Depends(get_db),
) -> Response:
    """
    Serves the cached coins snapshot while it is fresh, otherwise rebuilds it
    (one process at a time) or falls back to the last snapshot.

    Errors: 400 invalid_scope, 401 login_required, 503 leaderboard_disabled /
    server_busy.
    """
    viewer = await _viewer_for(request, db, config)
    view = await get_leaderboard(db, kind, config=config, viewer=viewer)
    return _leaderboard_response(request, view)


# =============================================================================
# GET /leaderboard/level
# =============================================================================
@router.get(
    "/level",
    response_model=LeaderboardOut,
    summary="Top-N by brain level (all-time) or weekly XP",
)
async def get_level_leaderboard(
    request: Request,
    kind: RankingKind = Depends(level_kind),
    config: RankingConfig = Depends(get_ranking_config),
    db: AsyncSession = Depends(get_db),
) -> Response:
    viewer = await _viewer_for(request, db, config)
    view = await get_leaderboard(db, kind, config=config, viewer=viewer)
    return _leaderboard_response(request, view)


# =============================================================================
# GET /leaderboard/coins/me, /leaderboard/level/me
# =============================================================================
@router.get(
    "/coins/me",
    response_model=MyRankOut,
    summary="Live coins rank of the signed-in user",
)
async def get_my_coins(
    config: RankingConfig = Depends(get_ranking_config),
    viewer: Optional[SessionUser] = Depends(get_optional_session_user),
    db: AsyncSession = Depends(get_db),
) -> Response:
    view = await get_my_coins_rank(db, config=config, viewer=viewer)
    return _my_rank_response(view)


@router.get(
    "/level/me",
    response_model=MyRankOut,
    summary="Live level rank of the signed-in user",
)
async def get_my_level(
    kind: RankingKind = Depends(level_kind),
    config: RankingConfig = Depends(get_ranking_config),
    viewer: Optional[SessionUser] = Depends(get_optional_session_user),
    db: AsyncSession = Depends(get_db),
) -> Response:
    """myRank/myEntry are null when the user has no activity this week."""
    view = await get_my_level_rank(db, kind, config=config, viewer=viewer)
    return _my_rank_response(view)


__all__ = ["router", "coins_kind", "level_kind"]
