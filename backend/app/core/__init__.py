# -*- coding: utf-8 -*-
# backend/app/core/__init__.py
# =============================================================================
# Purpose:
#   Entry point of the core layer: settings, logging bootstrap and a startup
#   self-check (boot_core) used by the app factory and the warmer entrypoint.
#
# Rules:
#   • Only config/logging are imported eagerly; heavier core modules
#     (database_core, system_locks, security_core) are imported where used.
#   • boot_core() never raises; it returns a diagnostic summary.
# =============================================================================

from __future__ import annotations

from typing import Any, Dict, List

from .config_core import get_settings
from .logging_core import get_logger
from .utils_core import iso_utc, utcnow

CORE_VERSION = "1.0.0"

logger = get_logger(__name__)


def core_health() -> Dict[str, Any]:
    """
    Quick sanity checks of the settings that the leaderboard cannot work
    without. Returns {ok, errors, snapshot}; never raises.
    """
    settings = get_settings()
    errors: List[str] = []

    if not settings.DATABASE_URL:
        errors.append("DATABASE_URL must be set.")
    if not settings.AUTH_SECRET:
        errors.append("AUTH_SECRET must be set (session cookies cannot be verified).")
    if not settings.LEADERBOARD_FLAG_KEY:
        errors.append("LEADERBOARD_FLAG_KEY must not be empty.")

    return {"ok": not errors, "errors": errors, "snapshot": settings.debug_dump()}


def boot_core() -> Dict[str, Any]:
    """Log the startup summary and return it."""
    health = core_health()
    logger.info(
        "Core boot: version=%s env=%s",
        CORE_VERSION,
        health["snapshot"].get("env"),
    )
    if not health["ok"]:
        logger.warning("Core health warnings: %s", health["errors"])
    return {
        "timestamp_utc": iso_utc(utcnow()),
        "core_version": CORE_VERSION,
        "health": health,
    }


__all__ = [
    "CORE_VERSION",
    "get_settings",
    "get_logger",
    "boot_core",
    "core_health",
]
