# ============================================================================
# brainboard: scheduler.update_rating
# -----------------------------------------------------------------------------
# Purpose: background snapshot warmer. Periodically rebuilds every enabled
#          leaderboard kind whose snapshot is stale, so that requests rarely
#          pay for a rebuild themselves.
#
# Rules:
#   • Same Aggregator and advisory lock as the request path; a warmer that
#     loses the lock simply skips that kind.
#   • Flag disabled → nothing is rebuilt; the week kind only while
#     weeklyEnabled is set.
#   • Errors are logged, the loop never dies; a tick is ~interval ± jitter.
#
# Entrypoints:
#   • run_once()                                  one pass (tests, cron)
#   • python -m backend.app.scheduler.update_rating   endless loop
#   • app lifespan when LEADERBOARD_WARMER_ENABLED=true
# ============================================================================
from __future__ import annotations

import asyncio
from datetime import datetime
from random import uniform
from typing import Awaitable, Callable, Dict, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config_core import get_settings
from ..core.database_core import lifespan_session
from ..core.logging_core import get_logger
from ..core.system_locks import AdvisoryLock
from ..core.utils_core import utcnow
from ..crud.ranks_crud import SnapshotStore
from ..services.leaderboard_service import RankingConfig, load_ranking_config
from ..services.ranks_service import COINS_ALL, LEVEL_ALL, LEVEL_WEEK, RankingKind, is_fresh, rebuild_snapshot

logger = get_logger(__name__)
settings = get_settings()

JITTER_SECONDS = 5.0


def kinds_to_warm(config: RankingConfig) -> Tuple[RankingKind, ...]:
    if not config.enabled:
        return ()
    if config.weekly_enabled:
        return (COINS_ALL, LEVEL_ALL, LEVEL_WEEK)
    return (COINS_ALL, LEVEL_ALL)


async def warm_session(
    db: AsyncSession,
    *,
    lock: Optional[AdvisoryLock] = None,
    now: Optional[datetime] = None,
) -> Dict[str, str]:
    """
    One warmer pass on an open session.

    Returns {kind: "fresh" | "rebuilt" | "skipped"}; empty when the
    leaderboard flag is off.
    """
    moment = now or utcnow()
    config = await load_ranking_config(db)
    store = SnapshotStore(db)
    outcome: Dict[str, str] = {}
    for kind in kinds_to_warm(config):
        record = await store.read(kind.kind)
        if is_fresh(
            record,
            kind,
            top_n=config.top_n,
            version=config.version,
            ttl_ms=config.ttl_ms,
            now=moment,
        ):
            outcome[kind.kind] = "fresh"
            continue
        refreshed = await rebuild_snapshot(
            db,
            kind,
            top_n=config.top_n,
            version=config.version,
            lock=lock,
            now=moment,
        )
        outcome[kind.kind] = "rebuilt" if refreshed else "skipped"
    return outcome


async def run_once() -> Dict[str, str]:
    """One guarded pass with its own session; never raises."""
    try:
        async with lifespan_session() as session:
            outcome = await warm_session(session)
    except Exception as exc:  # noqa: BLE001
        logger.exception("leaderboard warm pass failed", extra={"error": type(exc).__name__})
        return {}
    if outcome:
        logger.info("leaderboard warm pass done", extra={"outcome": outcome})
    return outcome


async def _run_forever(
    interval_seconds: Optional[float] = None,
    sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """Endless loop: pass, then sleep interval ± jitter."""
    base_sleep = float(interval_seconds or settings.LEADERBOARD_WARM_INTERVAL_SECONDS)
    logger.info("leaderboard warmer started", extra={"interval_s": base_sleep})
    while True:
        await run_once()
        await sleeper(max(1.0, base_sleep + uniform(-JITTER_SECONDS, JITTER_SECONDS)))


def run_forever() -> None:
    asyncio.run(_run_forever())


if __name__ == "__main__":
    run_forever()
