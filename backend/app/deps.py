# -*- coding: utf-8 -*-
# backend/app/deps.py
# =============================================================================
# Purpose:
#   Shared FastAPI dependencies of the leaderboard API:
#   • get_db                  one AsyncSession per request;
#   • get_session_user        verified session or 401 unauthorized;
#   • get_optional_session_user  verified session or None;
#   • get_ranking_config      RankingConfig from the feature flag;
#   • make_etag / etag_matches   strong ETag over a JSON body.
#
# No business logic here, only wiring and request-level validation.
# =============================================================================
from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database_core import get_db
from backend.app.core.errors_core import UnauthorizedError
from backend.app.core.security_core import SessionUser, verify_session
from backend.app.core.utils_core import sha256_hex
from backend.app.services.leaderboard_service import RankingConfig, load_ranking_config


# -----------------------------------------------------------------------------
# Auth
# -----------------------------------------------------------------------------
async def get_optional_session_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Optional[SessionUser]:
    return await verify_session(db, request.headers)


async def get_session_user(
    user: Optional[SessionUser] = Depends(get_optional_session_user),
) -> SessionUser:
    if user is None:
        raise UnauthorizedError()
    return user


# -----------------------------------------------------------------------------
# Ranking config (feature flag, read per request)
# -----------------------------------------------------------------------------
async def get_ranking_config(db: AsyncSession = Depends(get_db)) -> RankingConfig:
    return await load_ranking_config(db)


# -----------------------------------------------------------------------------
# ETag helpers
# -----------------------------------------------------------------------------
def make_etag(body: bytes) -> str:
    """Strong ETag: quoted sha256 of the exact response body."""
    return f'"{sha256_hex(body)}"'


def etag_matches(if_none_match: Optional[str], etag: str) -> bool:
    """If-None-Match may list several tags, or '*'; weak prefixes are ignored."""
    if not if_none_match:
        return False
    for candidate in if_none_match.split(","):
        tag = candidate.strip()
        if tag.startswith("W/"):
            tag = tag[2:]
        if tag == "*" or tag == etag:
            return True
    return False


__all__ = [
    "get_db",
    "get_session_user",
    "get_optional_session_user",
    "get_ranking_config",
    "make_etag",
    "etag_matches",
]
