from __future__ import annotations

from datetime import timedelta

import pytest

from backend.app.core.errors_core import (
    InvalidScopeError,
    LoginRequiredError,
    ServerBusyError,
    ServiceDisabledError,
    UnauthorizedError,
    UserNotFoundError,
)
from backend.app.core.security_core import SessionUser
from backend.app.crud.ranks_crud import SnapshotStore
from backend.app.services.leaderboard_service import (
    RankingConfig,
    get_leaderboard,
    get_my_coins_rank,
    get_my_level_rank,
)
from backend.app.services.ranks_service import COINS_ALL, LEVEL_ALL, LEVEL_WEEK, build_payload
from tests.conftest import NOW, FakeLock, add_activity, add_user

CONFIG = RankingConfig(enabled=True, top_n=10, version=1, ttl_ms=60_000)
COINS_LOCK = "leaderboard:coins:all"


def _viewer(user_id: str) -> SessionUser:
    return SessionUser(id=user_id, name="", image=None, xp=0, brain_level=1, brain_coins=0)


async def _seed_scores(db) -> None:
    await add_user(db, "u1", xp=10, scores=(100,))
    await add_user(db, "u2", xp=20, scores=(100,))
    await add_user(db, "u3", xp=30, scores=(50,))
    await db.commit()


async def _stale_snapshot(db, kind: str = "coins:all", age=timedelta(minutes=5)) -> None:
    at = NOW - age
    payload = build_payload(
        COINS_ALL,
        [{"rank": 1, "userId": "old", "displayName": "Old", "avatarUrl": None, "totalScore": 1}],
        top_n=10,
        version=1,
        now=at,
    )
    await SnapshotStore(db).upsert(kind, at, payload)
    await db.commit()


# -----------------------------------------------------------------------------
# Public top-N
# -----------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_first_read_builds_then_serves_cache(db, fake_lock):
    await _seed_scores(db)

    first = await get_leaderboard(db, COINS_ALL, config=CONFIG, lock=fake_lock, now=NOW)
    second = await get_leaderboard(
        db, COINS_ALL, config=CONFIG, lock=fake_lock, now=NOW + timedelta(seconds=30)
    )

    assert fake_lock.acquired == [COINS_LOCK]
    assert first.computed_at == second.computed_at == "2026-01-07T12:00:00.000Z"
    assert first.entries == second.entries
    assert [(e["userId"], e["rank"], e["medal"]) for e in first.entries] == [
        ("u2", 1, "gold"),
        ("u1", 2, "silver"),
        ("u3", 3, "bronze"),
    ]
    assert first.kind == "coins" and first.scope == "all"
    assert first.config == {"topN": 10, "version": 1}
    assert first.cache_control == "public, max-age=30, stale-while-revalidate=120"


@pytest.mark.asyncio
async def test_expired_snapshot_is_rebuilt(db, fake_lock):
    await _seed_scores(db)
    await get_leaderboard(db, COINS_ALL, config=CONFIG, lock=fake_lock, now=NOW)

    later = NOW + timedelta(seconds=61)
    view = await get_leaderboard(db, COINS_ALL, config=CONFIG, lock=fake_lock, now=later)

    assert fake_lock.acquired == [COINS_LOCK, COINS_LOCK]
    assert view.computed_at == "2026-01-07T12:01:01.000Z"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "changed",
    [
        RankingConfig(enabled=True, top_n=10, version=2, ttl_ms=60_000),
        RankingConfig(enabled=True, top_n=2, version=1, ttl_ms=60_000),
    ],
)
async def test_version_or_top_n_bump_forces_rebuild_within_ttl(db, fake_lock, changed):
    await _seed_scores(db)
    await get_leaderboard(db, COINS_ALL, config=CONFIG, lock=fake_lock, now=NOW)

    view = await get_leaderboard(
        db, COINS_ALL, config=changed, lock=fake_lock, now=NOW + timedelta(seconds=1)
    )

    assert len(fake_lock.acquired) == 2
    assert view.config == {"topN": changed.top_n, "version": changed.version}
    assert len(view.entries) == min(3, changed.top_n)


@pytest.mark.asyncio
async def test_contention_one_writer_others_serve_stale(db):
    await _seed_scores(db)
    await _stale_snapshot(db)
    lock = FakeLock(held_elsewhere={COINS_LOCK})

    losers = [
        await get_leaderboard(db, COINS_ALL, config=CONFIG, lock=lock, now=NOW)
        for _ in range(4)
    ]

    assert lock.acquired == []
    assert len(lock.attempts) == 4
    assert {v.computed_at for v in losers} == {"2026-01-07T11:55:00.000Z"}
    assert all(v.entries[0]["userId"] == "old" for v in losers)

    # The in-flight writer finishes; the next reader sees its result.
    lock.held_elsewhere.clear()
    winner = await get_leaderboard(db, COINS_ALL, config=CONFIG, lock=lock, now=NOW)
    assert lock.acquired == [COINS_LOCK]
    assert winner.entries[0]["userId"] == "u2"


@pytest.mark.asyncio
async def test_busy_without_any_snapshot(db):
    await _seed_scores(db)
    lock = FakeLock(held_elsewhere={COINS_LOCK})

    with pytest.raises(ServerBusyError):
        await get_leaderboard(db, COINS_ALL, config=CONFIG, lock=lock, now=NOW)


@pytest.mark.asyncio
async def test_legacy_unscoped_row_is_read_but_never_written(db, fake_lock):
    await _seed_scores(db)
    await _stale_snapshot(db, kind="coins", age=timedelta(seconds=10))

    view = await get_leaderboard(db, COINS_ALL, config=CONFIG, lock=fake_lock, now=NOW)

    assert fake_lock.attempts == []
    assert view.entries[0]["userId"] == "old"
    assert await SnapshotStore(db).read("coins:all") is None


@pytest.mark.asyncio
async def test_stale_legacy_row_triggers_scoped_rebuild(db, fake_lock):
    await _seed_scores(db)
    await _stale_snapshot(db, kind="coins")

    view = await get_leaderboard(db, COINS_ALL, config=CONFIG, lock=fake_lock, now=NOW)

    assert view.entries[0]["userId"] == "u2"
    legacy = await SnapshotStore(db).read("coins")
    assert legacy.payload["entries"][0]["userId"] == "old"


@pytest.mark.asyncio
async def test_disabled_flag_wins_over_fresh_cache(db, fake_lock):
    await _seed_scores(db)
    await get_leaderboard(db, COINS_ALL, config=CONFIG, lock=fake_lock, now=NOW)

    with pytest.raises(ServiceDisabledError):
        await get_leaderboard(db, COINS_ALL, config=RankingConfig(enabled=False), now=NOW)


@pytest.mark.asyncio
async def test_hidden_guests(db, fake_lock):
    await _seed_scores(db)
    config = RankingConfig(enabled=True, hide_guests=True)

    with pytest.raises(LoginRequiredError):
        await get_leaderboard(db, COINS_ALL, config=config, lock=fake_lock, now=NOW)

    view = await get_leaderboard(
        db, COINS_ALL, config=config, viewer=_viewer("u1"), lock=fake_lock, now=NOW
    )
    assert view.cache_control == "private, no-store"


@pytest.mark.asyncio
async def test_week_scope_requires_weekly_enabled(db, fake_lock):
    with pytest.raises(InvalidScopeError):
        await get_leaderboard(db, LEVEL_WEEK, config=CONFIG, lock=fake_lock, now=NOW)
    assert fake_lock.attempts == []


@pytest.mark.asyncio
async def test_week_board(db, fake_lock):
    await add_user(db, "a", brain_level=2)
    await add_user(db, "b", brain_level=3)
    await add_activity(db, "a", NOW.date(), 70)
    await db.commit()
    config = RankingConfig(enabled=True, weekly_enabled=True)

    view = await get_leaderboard(db, LEVEL_WEEK, config=config, lock=fake_lock, now=NOW)

    assert view.kind == "level" and view.scope == "week"
    assert [(e["userId"], e["weeklyXp"], e["medal"]) for e in view.entries] == [("a", 70, "gold")]


# -----------------------------------------------------------------------------
# "My rank"
# -----------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_my_coins_rank(db, fake_lock):
    await _seed_scores(db)

    before = await get_my_coins_rank(db, config=CONFIG, viewer=_viewer("u1"))
    await get_leaderboard(db, COINS_ALL, config=CONFIG, lock=fake_lock, now=NOW)
    after = await get_my_coins_rank(db, config=CONFIG, viewer=_viewer("u1"))

    assert before.computed_at is None
    assert after.computed_at == "2026-01-07T12:00:00.000Z"
    assert after.my_rank == 2
    assert after.my_entry["medal"] == "silver"
    assert after.my_entry["totalScore"] == 100


@pytest.mark.asyncio
async def test_my_rank_errors(db):
    await _seed_scores(db)

    with pytest.raises(ServiceDisabledError):
        await get_my_coins_rank(db, config=RankingConfig(enabled=False), viewer=None)
    with pytest.raises(UnauthorizedError):
        await get_my_coins_rank(db, config=CONFIG, viewer=None)
    with pytest.raises(UserNotFoundError):
        await get_my_coins_rank(db, config=CONFIG, viewer=_viewer("deleted"))
    with pytest.raises(InvalidScopeError):
        await get_my_level_rank(db, LEVEL_WEEK, config=CONFIG, viewer=_viewer("u1"))


@pytest.mark.asyncio
async def test_my_level_rank_all_and_week(db):
    await add_user(db, "a", brain_level=4, xp=10)
    await add_user(db, "b", brain_level=2)
    await add_activity(db, "b", NOW.date(), 5)
    await db.commit()
    config = RankingConfig(enabled=True, weekly_enabled=True)

    all_time = await get_my_level_rank(db, LEVEL_ALL, config=config, viewer=_viewer("b"), now=NOW)
    week_b = await get_my_level_rank(db, LEVEL_WEEK, config=config, viewer=_viewer("b"), now=NOW)
    week_a = await get_my_level_rank(db, LEVEL_WEEK, config=config, viewer=_viewer("a"), now=NOW)

    assert (all_time.my_rank, all_time.my_entry["brainLevel"]) == (2, 2)
    assert (week_b.my_rank, week_b.my_entry["weeklyXp"], week_b.my_entry["medal"]) == (1, 5, "gold")
    assert week_a.my_rank is None and week_a.my_entry is None
    assert week_a.computed_at is None
