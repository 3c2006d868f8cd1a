# -*- coding: utf-8 -*-
# backend/app/routes/__init__.py
# =============================================================================
# Purpose:
#   Single mounting point of the HTTP routers:
#     • api_router: every router module's `router`, in a fixed order;
#     • register(app, prefix): include api_router into the FastAPI app.
#
# Rules:
#   • No business logic, no SQL; only include_router.
#   • Each router module owns its prefix ("/leaderboard", ...); register()
#     only adds the common API prefix.
# =============================================================================

from __future__ import annotations

from typing import List, Tuple

from fastapi import APIRouter, FastAPI

from backend.app.core.logging_core import get_logger
from backend.app.routes import leaderboard_routes

logger = get_logger(__name__)

ROUTERS: Tuple[Tuple[str, APIRouter], ...] = (
    ("leaderboard_routes", leaderboard_routes.router),
)

api_router = APIRouter()
for _name, _router in ROUTERS:
    api_router.include_router(_router)


def register(app: FastAPI, prefix: str = "") -> None:
    """Mount api_router under `prefix` (usually settings.API_PREFIX)."""
    app.include_router(api_router, prefix=prefix)
    logger.info(
        "routes: registered (prefix=%r): %s",
        prefix,
        ",".join(list_registered_routes()),
    )


def list_registered_routes() -> List[str]:
    return [name for name, _ in ROUTERS]


__all__ = [
    "api_router",
    "register",
    "list_registered_routes",
    "ROUTERS",
]
