# -*- coding: utf-8 -*-
# backend/app/services/ranks_service.py
# =============================================================================
# Purpose:
#   Ranking engine of the leaderboard:
#   • RankingKind: board + scope ("coins:all", "level:all", "level:week"),
#     with its snapshot lookup chain and metric field;
#   • is_fresh(): freshness predicate of a stored snapshot;
#   • rebuild_snapshot(): the Aggregator. Computes top-N and upserts the
#     snapshot under a transaction-scoped advisory lock;
#   • lookup_coins_rank() / lookup_level_rank(): live rank of one user
#     against the full population (read-only, never touches snapshots).
#
# Ranking policy (top-N and live lookup share one ordering per kind):
#   • coins:all  ordinal; totalScore DESC, xp DESC, userId DESC
#   • level:all  ordinal; brainLevel DESC, xp DESC, brainCoins DESC, userId DESC
#   • level:week dense_rank over weeklyXp, brainLevel, xp, brainCoins,
#                updatedAt (all DESC); listed by (rank, userId DESC)
#
# Rules:
#   • A busy lock is not an error: rebuild_snapshot() returns False.
#   • Any error inside the rebuild rolls the whole transaction back, is
#     logged and returns False; a snapshot is never half-written.
#   • Medals are derived at read time and never stored.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import Select, and_, func, or_, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config_core import get_settings
from backend.app.core.database_core import has_pending_writes
from backend.app.core.errors_core import InvalidScopeError
from backend.app.core.logging_core import get_logger
from backend.app.core.system_locks import AdvisoryLock, advisory_lock_for, lock_name
from backend.app.core.utils_core import iso_utc, unix_ms, utcnow, week_window
from backend.app.crud.ranks_crud import SnapshotLookup, SnapshotRecord, SnapshotStore
from backend.app.models import DailyActivity, GameSession, User

logger = get_logger(__name__)
settings = get_settings()

MEDALS: Dict[int, str] = {1: "gold", 2: "silver", 3: "bronze"}


# -----------------------------------------------------------------------------
# Kinds
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class RankingKind:
    board: str
    scope: str
    metric_field: str

    @property
    def kind(self) -> str:
        return f"{self.board}:{self.scope}"

    @property
    def lookup(self) -> SnapshotLookup:
        """All-time kinds fall back to the legacy unscoped row; week does not."""
        if self.scope == "all":
            return SnapshotLookup(self.kind, (self.board,))
        return SnapshotLookup(self.kind)


COINS_ALL = RankingKind("coins", "all", "totalScore")
LEVEL_ALL = RankingKind("level", "all", "brainLevel")
LEVEL_WEEK = RankingKind("level", "week", "weeklyXp")

KINDS: Dict[Tuple[str, str], RankingKind] = {
    (k.board, k.scope): k for k in (COINS_ALL, LEVEL_ALL, LEVEL_WEEK)
}


def resolve_kind(board: str, scope: Optional[str]) -> RankingKind:
    """Syntactic scope check; raises InvalidScopeError before any DB access."""
    found = KINDS.get((board, (scope or "all").strip().lower()))
    if found is None:
        allowed = sorted(s for b, s in KINDS if b == board)
        raise InvalidScopeError(details={"scope": scope, "allowed": allowed})
    return found


def medal_for(rank: Optional[int]) -> Optional[str]:
    if rank is None:
        return None
    return MEDALS.get(int(rank))


# -----------------------------------------------------------------------------
# Freshness
# -----------------------------------------------------------------------------
def is_fresh(
    record: Optional[SnapshotRecord],
    kind: RankingKind,
    *,
    top_n: int,
    version: int,
    ttl_ms: int,
    now: Optional[datetime] = None,
) -> bool:
    if record is None:
        return False
    moment = now or utcnow()
    computed_ms = unix_ms(record.computed_at)
    if computed_ms <= 0 or unix_ms(moment) - computed_ms >= ttl_ms:
        return False

    payload = record.payload or {}
    config = payload.get("config") or {}
    if config.get("version") != version or config.get("topN") != top_n:
        return False

    entries = payload.get("entries") or []
    if entries and kind.metric_field not in (entries[0] or {}):
        return False

    if kind.scope == "week":
        window = config.get("window") or {}
        start, _ = week_window(moment)
        if window.get("start") != iso_utc(start):
            return False
    return True


# -----------------------------------------------------------------------------
# Queries
# -----------------------------------------------------------------------------
def _total_score():
    return func.coalesce(func.sum(GameSession.score), 0)


def _coins_scores_subquery():
    """Every user with the sum of their session scores (0 without sessions)."""
    return (
        select(
            User.id.label("user_id"),
            User.name.label("name"),
            User.image.label("image"),
            User.brain_level.label("brain_level"),
            User.xp.label("xp"),
            _total_score().label("total_score"),
        )
        .select_from(User)
        .outerjoin(GameSession, GameSession.user_id == User.id)
        .group_by(User.id, User.name, User.image, User.brain_level, User.xp)
        .subquery("scores")
    )


def _weekly_ranked_subquery(now: datetime):
    """Users with activity in the current week, dense-ranked."""
    start, end = week_window(now)
    weekly = (
        select(
            User.id.label("user_id"),
            User.name.label("name"),
            User.image.label("image"),
            User.brain_level.label("brain_level"),
            User.xp.label("xp"),
            User.brain_coins.label("brain_coins"),
            User.updated_at.label("updated_at"),
            func.coalesce(func.sum(DailyActivity.total_xp), 0).label("weekly_xp"),
        )
        .select_from(User)
        .join(DailyActivity, DailyActivity.user_id == User.id)
        .where(DailyActivity.date >= start.date(), DailyActivity.date < end.date())
        .group_by(
            User.id,
            User.name,
            User.image,
            User.brain_level,
            User.xp,
            User.brain_coins,
            User.updated_at,
        )
        .subquery("weekly")
    )
    rank = (
        func.dense_rank()
        .over(
            order_by=(
                weekly.c.weekly_xp.desc(),
                weekly.c.brain_level.desc(),
                weekly.c.xp.desc(),
                weekly.c.brain_coins.desc(),
                weekly.c.updated_at.desc(),
            )
        )
        .label("rank")
    )
    return select(weekly, rank).subquery("ranked")


def _coins_top_stmt(top_n: int) -> Select:
    scores = _coins_scores_subquery()
    return (
        select(scores)
        .order_by(scores.c.total_score.desc(), scores.c.xp.desc(), scores.c.user_id.desc())
        .limit(top_n)
    )


def _level_top_stmt(top_n: int) -> Select:
    return (
        select(User.id, User.name, User.image, User.brain_level, User.xp, User.brain_coins)
        .order_by(
            User.brain_level.desc(),
            User.xp.desc(),
            User.brain_coins.desc(),
            User.id.desc(),
        )
        .limit(top_n)
    )


def _week_top_stmt(top_n: int, now: datetime) -> Select:
    ranked = _weekly_ranked_subquery(now)
    return (
        select(ranked)
        .order_by(ranked.c.rank.asc(), ranked.c.user_id.desc())
        .limit(top_n)
    )


# -----------------------------------------------------------------------------
# Entry shapes (camelCase, as stored in the payload)
# -----------------------------------------------------------------------------
def _coins_entry(rank: int, row: Any) -> Dict[str, Any]:
    return {
        "rank": rank,
        "userId": row.user_id,
        "displayName": row.name or "",
        "avatarUrl": row.image,
        "totalScore": int(row.total_score or 0),
        "brainLevel": int(row.brain_level or 1),
    }


def _level_entry(rank: int, row: Any) -> Dict[str, Any]:
    return {
        "rank": rank,
        "userId": row.id,
        "displayName": row.name or "",
        "avatarUrl": row.image,
        "brainLevel": int(row.brain_level or 1),
        "xp": int(row.xp or 0),
        "brainCoins": int(row.brain_coins or 0),
    }


def _week_entry(row: Any) -> Dict[str, Any]:
    return {
        "rank": int(row.rank),
        "userId": row.user_id,
        "displayName": row.name or "",
        "avatarUrl": row.image,
        "brainLevel": int(row.brain_level or 1),
        "xp": int(row.xp or 0),
        "brainCoins": int(row.brain_coins or 0),
        "weeklyXp": int(row.weekly_xp or 0),
    }


async def compute_entries(
    db: AsyncSession,
    kind: RankingKind,
    *,
    top_n: int,
    now: datetime,
) -> List[Dict[str, Any]]:
    """Top-N entries of a kind, ranked by its policy."""
    if kind == COINS_ALL:
        rows = (await db.execute(_coins_top_stmt(top_n))).all()
        return [_coins_entry(i + 1, row) for i, row in enumerate(rows)]
    if kind == LEVEL_ALL:
        rows = (await db.execute(_level_top_stmt(top_n))).all()
        return [_level_entry(i + 1, row) for i, row in enumerate(rows)]
    if kind == LEVEL_WEEK:
        rows = (await db.execute(_week_top_stmt(top_n, now))).all()
        return [_week_entry(row) for row in rows]
    raise ValueError(f"unknown ranking kind: {kind.kind}")


def build_payload(
    kind: RankingKind,
    entries: List[Dict[str, Any]],
    *,
    top_n: int,
    version: int,
    now: datetime,
) -> Dict[str, Any]:
    config: Dict[str, Any] = {"topN": top_n, "version": version}
    if kind.scope == "week":
        start, end = week_window(now)
        config["window"] = {"type": "week", "start": iso_utc(start), "end": iso_utc(end)}
    return {
        "computedAt": iso_utc(now),
        "kind": kind.board,
        "scope": kind.scope,
        "config": config,
        "entries": entries,
    }


# -----------------------------------------------------------------------------
# Aggregator
# -----------------------------------------------------------------------------
async def _apply_statement_timeout(db: AsyncSession) -> None:
    if db.get_bind().dialect.name != "postgresql":
        return
    timeout_ms = int(settings.DB_STATEMENT_TIMEOUT_MS)
    if timeout_ms > 0:
        await db.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))


async def rebuild_snapshot(
    db: AsyncSession,
    kind: RankingKind,
    *,
    top_n: int,
    version: int,
    lock: Optional[AdvisoryLock] = None,
    now: Optional[datetime] = None,
) -> bool:
    """
    Recompute `kind` and upsert its snapshot. Returns True when written.

    False means another process holds the lock, or the computation failed;
    in both cases the previous snapshot (if any) is untouched.

    The lock needs a transaction of its own, so a read-only transaction left
    open on `db` is rolled back first. A session with uncommitted writes is
    refused with RuntimeError; committing or discarding them is the
    caller's decision.
    """
    if has_pending_writes(db):
        raise RuntimeError("rebuild_snapshot needs a session without uncommitted writes")

    moment = now or utcnow()
    name = lock_name(kind.kind)
    try:
        if db.in_transaction():
            await db.rollback()
        async with db.begin():
            await _apply_statement_timeout(db)
            capability = lock or advisory_lock_for(db)
            if not await capability.try_acquire(db, name):
                logger.info(
                    "Snapshot rebuild skipped: lock busy",
                    extra={"kind": kind.kind, "lock_backend": capability.backend},
                )
                return False

            entries = await compute_entries(db, kind, top_n=top_n, now=moment)
            payload = build_payload(kind, entries, top_n=top_n, version=version, now=moment)
            await SnapshotStore(db).upsert(kind.kind, moment, payload)
    except Exception:  # noqa: BLE001
        logger.warning("Snapshot rebuild failed", extra={"kind": kind.kind}, exc_info=True)
        return False

    logger.info(
        "Snapshot rebuilt",
        extra={"kind": kind.kind, "entries": len(entries), "top_n": top_n, "version": version},
    )
    return True


# -----------------------------------------------------------------------------
# Rank Lookup
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class MyRank:
    """Live rank of one user; rank/entry are None when the user is unranked."""

    rank: Optional[int]
    entry: Optional[Dict[str, Any]]


async def lookup_coins_rank(db: AsyncSession, user_id: str) -> Optional[MyRank]:
    """
    1 + number of users strictly ahead on (totalScore, xp, userId).
    None when the user row does not exist.
    """
    user = (
        await db.execute(
            select(User.id, User.name, User.image, User.xp, User.brain_level).where(User.id == user_id)
        )
    ).first()
    if user is None:
        return None

    my_score = int(
        await db.scalar(
            select(_total_score()).where(GameSession.user_id == user_id)
        )
        or 0
    )
    my_xp = int(user.xp or 0)

    scores = _coins_scores_subquery()
    ahead = await db.scalar(
        select(func.count())
        .select_from(scores)
        .where(
            or_(
                scores.c.total_score > my_score,
                and_(scores.c.total_score == my_score, scores.c.xp > my_xp),
                and_(
                    scores.c.total_score == my_score,
                    scores.c.xp == my_xp,
                    scores.c.user_id > user.id,
                ),
            )
        )
    )
    rank = int(ahead or 0) + 1
    return MyRank(
        rank=rank,
        entry={
            "rank": rank,
            "userId": user.id,
            "displayName": user.name or "",
            "avatarUrl": user.image,
            "totalScore": my_score,
            "brainLevel": int(user.brain_level or 1),
        },
    )


async def _level_rank_all(db: AsyncSession, user: Any) -> MyRank:
    level, xp, coins = int(user.brain_level or 1), int(user.xp or 0), int(user.brain_coins or 0)
    ahead = await db.scalar(
        select(func.count())
        .select_from(User)
        .where(
            or_(
                User.brain_level > level,
                and_(User.brain_level == level, User.xp > xp),
                and_(User.brain_level == level, User.xp == xp, User.brain_coins > coins),
                and_(
                    User.brain_level == level,
                    User.xp == xp,
                    User.brain_coins == coins,
                    User.id > user.id,
                ),
            )
        )
    )
    rank = int(ahead or 0) + 1
    return MyRank(rank=rank, entry=_level_entry(rank, user))


async def _level_rank_week(db: AsyncSession, user_id: str, now: datetime) -> MyRank:
    ranked = _weekly_ranked_subquery(now)
    row = (await db.execute(select(ranked).where(ranked.c.user_id == user_id))).first()
    if row is None:
        return MyRank(rank=None, entry=None)
    entry = _week_entry(row)
    return MyRank(rank=entry["rank"], entry=entry)


async def lookup_level_rank(
    db: AsyncSession,
    user_id: str,
    kind: RankingKind,
    *,
    now: Optional[datetime] = None,
) -> Optional[MyRank]:
    """
    Live level rank for `kind` (level:all or level:week).
    None when the user row does not exist; MyRank(None, None) when the user
    has no activity in the current week.
    """
    user = (
        await db.execute(
            select(User.id, User.name, User.image, User.brain_level, User.xp, User.brain_coins).where(
                User.id == user_id
            )
        )
    ).first()
    if user is None:
        return None
    if kind.scope == "week":
        return await _level_rank_week(db, user_id, now or utcnow())
    return await _level_rank_all(db, user)


__all__ = [
    "RankingKind",
    "COINS_ALL",
    "LEVEL_ALL",
    "LEVEL_WEEK",
    "KINDS",
    "resolve_kind",
    "medal_for",
    "is_fresh",
    "compute_entries",
    "build_payload",
    "rebuild_snapshot",
    "MyRank",
    "lookup_coins_rank",
    "lookup_level_rank",
]
