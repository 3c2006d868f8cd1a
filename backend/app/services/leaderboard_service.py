# -*- coding: utf-8 -*-
# backend/app/services/leaderboard_service.py
# =============================================================================
# Purpose:
#   Leaderboard Query Handler:
#   • RankingConfig parsed and clamped from the "leaderboard" feature flag;
#   • get_leaderboard(): serve a fresh snapshot, or rebuild it, or fall back
#     to whatever snapshot exists (even stale), or answer "busy";
#   • get_my_coins_rank() / get_my_level_rank(): live "my rank" views;
#   • cache_control_for(): Cache-Control header of public responses.
#
# Rules:
#   • The flag gates everything: disabled (or unreadable) → 503, whatever
#     the cache state is.
#   • The weekly scope is allowed only while weeklyEnabled is set.
#   • hideGuests makes the public boards per-viewer (401 for guests,
#     "private, no-store" for everybody else).
#   • The handler never writes snapshots itself; ranks_service does.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config_core import get_settings
from backend.app.core.errors_core import (
    InvalidScopeError,
    LoginRequiredError,
    ServerBusyError,
    ServiceDisabledError,
    UnauthorizedError,
    UserNotFoundError,
)
from backend.app.core.logging_core import get_logger
from backend.app.core.security_core import SessionUser
from backend.app.core.system_locks import AdvisoryLock
from backend.app.core.utils_core import as_bool, as_int, as_number, clamp_int, iso_utc, utcnow
from backend.app.crud.flags_crud import FlagsCRUD, FlagState
from backend.app.crud.ranks_crud import SnapshotRecord, SnapshotStore
from backend.app.services.ranks_service import (
    COINS_ALL,
    RankingKind,
    is_fresh,
    lookup_coins_rank,
    lookup_level_rank,
    medal_for,
    rebuild_snapshot,
)

logger = get_logger(__name__)
settings = get_settings()

DEFAULT_TOP_N = 10
MAX_TOP_N = 100
DEFAULT_TTL_SECONDS = 60
DEFAULT_TTL_MS = 60_000
MIN_TTL_MS = 5_000
MAX_TTL_MS = 3_600_000

PRIVATE_NO_STORE = "private, no-store"


# -----------------------------------------------------------------------------
# Config
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class RankingConfig:
    enabled: bool = False
    top_n: int = DEFAULT_TOP_N
    version: int = 1
    ttl_ms: int = DEFAULT_TTL_MS
    hide_guests: bool = False
    weekly_enabled: bool = False

    @property
    def ttl_seconds(self) -> int:
        return self.ttl_ms // 1000


def _ttl_ms(payload: Dict[str, Any]) -> int:
    seconds = as_number(payload.get("snapshotTtlSeconds", DEFAULT_TTL_SECONDS))
    if seconds is not None and seconds > 0:
        ttl = int(seconds * 1000)
    else:
        ms = as_number(payload.get("snapshotTtlMs", DEFAULT_TTL_MS))
        # 0, negative or junk means "not configured".
        ttl = int(ms) if ms is not None and ms > 0 else DEFAULT_TTL_MS
    return clamp_int(ttl, MIN_TTL_MS, MAX_TTL_MS)


def parse_ranking_config(flag: FlagState) -> RankingConfig:
    """Flag row → RankingConfig; junk values fall back to defaults."""
    payload = flag.payload or {}
    return RankingConfig(
        enabled=bool(flag.enabled),
        top_n=clamp_int(as_int(payload.get("topN"), DEFAULT_TOP_N), 1, MAX_TOP_N),
        version=max(1, as_int(payload.get("version"), 1)),
        ttl_ms=_ttl_ms(payload),
        hide_guests=as_bool(payload.get("hideGuests"), False),
        weekly_enabled=as_bool(payload.get("weeklyEnabled"), False),
    )


async def load_ranking_config(db: AsyncSession, key: Optional[str] = None) -> RankingConfig:
    flag = await FlagsCRUD(db).get_flag(key or settings.LEADERBOARD_FLAG_KEY)
    return parse_ranking_config(flag)


def cache_control_for(config: RankingConfig) -> str:
    if config.hide_guests:
        return PRIVATE_NO_STORE
    ttl_s = config.ttl_seconds
    return f"public, max-age={max(5, ttl_s // 2)}, stale-while-revalidate={ttl_s * 2}"


# -----------------------------------------------------------------------------
# Views
# -----------------------------------------------------------------------------
@dataclass
class LeaderboardView:
    kind: str
    scope: str
    computed_at: str
    config: Dict[str, Any]
    entries: List[Dict[str, Any]] = field(default_factory=list)
    cache_control: str = PRIVATE_NO_STORE


@dataclass
class MyRankView:
    kind: str
    scope: str
    computed_at: Optional[str]
    my_rank: Optional[int]
    my_entry: Optional[Dict[str, Any]]


def _shape_entries(record: SnapshotRecord) -> List[Dict[str, Any]]:
    shaped: List[Dict[str, Any]] = []
    for entry in (record.payload or {}).get("entries") or []:
        if not isinstance(entry, dict):
            continue
        item = dict(entry)
        item["medal"] = medal_for(item.get("rank"))
        shaped.append(item)
    return shaped


def _ensure_scope_allowed(kind: RankingKind, config: RankingConfig) -> None:
    if kind.scope == "week" and not config.weekly_enabled:
        raise InvalidScopeError(
            "Weekly leaderboard is not enabled.",
            details={"scope": kind.scope},
        )


# -----------------------------------------------------------------------------
# Public top-N
# -----------------------------------------------------------------------------
async def get_leaderboard(
    db: AsyncSession,
    kind: RankingKind,
    *,
    config: RankingConfig,
    viewer: Optional[SessionUser] = None,
    lock: Optional[AdvisoryLock] = None,
    now: Optional[datetime] = None,
) -> LeaderboardView:
    if not config.enabled:
        raise ServiceDisabledError()
    _ensure_scope_allowed(kind, config)
    if config.hide_guests and viewer is None:
        raise LoginRequiredError()

    moment = now or utcnow()
    store = SnapshotStore(db)
    record = await store.read_first(kind.lookup)

    if not is_fresh(
        record,
        kind,
        top_n=config.top_n,
        version=config.version,
        ttl_ms=config.ttl_ms,
        now=moment,
    ):
        refreshed = await rebuild_snapshot(
            db,
            kind,
            top_n=config.top_n,
            version=config.version,
            lock=lock,
            now=moment,
        )
        if refreshed:
            record = await store.read(kind.kind)
        else:
            # The lock holder may have committed in the meantime.
            record = await store.read_first(kind.lookup) or record
            if record is not None:
                logger.warning(
                    "Serving stale leaderboard snapshot",
                    extra={"kind": kind.kind, "snapshot_kind": record.kind},
                )

    if record is None:
        raise ServerBusyError()

    return LeaderboardView(
        kind=kind.board,
        scope=kind.scope,
        computed_at=iso_utc(record.computed_at),
        config={"topN": config.top_n, "version": config.version},
        entries=_shape_entries(record),
        cache_control=cache_control_for(config),
    )


# -----------------------------------------------------------------------------
# "My rank"
# -----------------------------------------------------------------------------
async def _snapshot_computed_at(db: AsyncSession, kind: RankingKind) -> Optional[str]:
    record = await SnapshotStore(db).read_first(kind.lookup)
    return iso_utc(record.computed_at) if record is not None else None


def _with_medal(entry: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if entry is None:
        return None
    return {**entry, "medal": medal_for(entry.get("rank"))}


async def get_my_coins_rank(
    db: AsyncSession,
    *,
    config: RankingConfig,
    viewer: Optional[SessionUser],
) -> MyRankView:
    if not config.enabled:
        raise ServiceDisabledError()
    if viewer is None:
        raise UnauthorizedError()

    computed_at = await _snapshot_computed_at(db, COINS_ALL)
    mine = await lookup_coins_rank(db, viewer.id)
    if mine is None:
        raise UserNotFoundError()
    return MyRankView(
        kind=COINS_ALL.board,
        scope=COINS_ALL.scope,
        computed_at=computed_at,
        my_rank=mine.rank,
        my_entry=_with_medal(mine.entry),
    )


async def get_my_level_rank(
    db: AsyncSession,
    kind: RankingKind,
    *,
    config: RankingConfig,
    viewer: Optional[SessionUser],
    now: Optional[datetime] = None,
) -> MyRankView:
    if not config.enabled:
        raise ServiceDisabledError()
    _ensure_scope_allowed(kind, config)
    if viewer is None:
        raise UnauthorizedError()

    computed_at = await _snapshot_computed_at(db, kind)
    mine = await lookup_level_rank(db, viewer.id, kind, now=now)
    if mine is None:
        raise UserNotFoundError()
    return MyRankView(
        kind=kind.board,
        scope=kind.scope,
        computed_at=computed_at,
        my_rank=mine.rank,
        my_entry=_with_medal(mine.entry),
    )


__all__ = [
    "RankingConfig",
    "parse_ranking_config",
    "load_ranking_config",
    "cache_control_for",
    "LeaderboardView",
    "MyRankView",
    "get_leaderboard",
    "get_my_coins_rank",
    "get_my_level_rank",
]
