from __future__ import annotations

from datetime import date, timedelta

import pytest

from backend.app.core.database_core import has_pending_writes
from backend.app.core.errors_core import InvalidScopeError
from backend.app.crud.ranks_crud import SnapshotRecord, SnapshotStore
from backend.app.models import User
from backend.app.services import ranks_service
from backend.app.services.ranks_service import (
    COINS_ALL,
    LEVEL_ALL,
    LEVEL_WEEK,
    MyRank,
    RankingKind,
    build_payload,
    is_fresh,
    lookup_coins_rank,
    lookup_level_rank,
    medal_for,
    rebuild_snapshot,
    resolve_kind,
)
from tests.conftest import NOW, FakeLock, add_activity, add_user

MONDAY = date(2026, 1, 5)


# -----------------------------------------------------------------------------
# Kinds and medals
# -----------------------------------------------------------------------------
def test_resolve_kind():
    assert resolve_kind("coins", "all") is COINS_ALL
    assert resolve_kind("level", None) is LEVEL_ALL
    assert resolve_kind("level", "WEEK") is LEVEL_WEEK
    with pytest.raises(InvalidScopeError):
        resolve_kind("coins", "week")
    with pytest.raises(InvalidScopeError):
        resolve_kind("level", "month")


def test_lookup_chains():
    assert COINS_ALL.lookup.chain == ("coins:all", "coins")
    assert LEVEL_ALL.lookup.chain == ("level:all", "level")
    assert LEVEL_WEEK.lookup.chain == ("level:week",)


@pytest.mark.parametrize(
    "rank, medal",
    [(1, "gold"), (2, "silver"), (3, "bronze"), (4, None), (100, None), (None, None)],
)
def test_medal_for(rank, medal):
    assert medal_for(rank) == medal


# -----------------------------------------------------------------------------
# Freshness
# -----------------------------------------------------------------------------
def _record(kind: RankingKind, *, top_n=10, version=1, entries=None, at=NOW) -> SnapshotRecord:
    default_entry = {"rank": 1, "userId": "u1", kind.metric_field: 1}
    payload = build_payload(
        kind,
        [default_entry] if entries is None else entries,
        top_n=top_n,
        version=version,
        now=at,
    )
    return SnapshotRecord(kind=kind.kind, computed_at=at, payload=payload)


def test_fresh_within_ttl_only():
    record = _record(COINS_ALL)
    opts = dict(top_n=10, version=1, ttl_ms=60_000)
    assert is_fresh(record, COINS_ALL, now=NOW + timedelta(seconds=30), **opts)
    assert not is_fresh(record, COINS_ALL, now=NOW + timedelta(seconds=60), **opts)
    assert not is_fresh(None, COINS_ALL, now=NOW, **opts)


def test_version_or_top_n_change_is_stale():
    record = _record(COINS_ALL)
    later = NOW + timedelta(seconds=1)
    assert not is_fresh(record, COINS_ALL, top_n=10, version=2, ttl_ms=60_000, now=later)
    assert not is_fresh(record, COINS_ALL, top_n=5, version=1, ttl_ms=60_000, now=later)


def test_entries_without_metric_are_stale():
    record = _record(LEVEL_ALL, entries=[{"rank": 1, "userId": "u1", "totalScore": 5}])
    assert not is_fresh(record, LEVEL_ALL, top_n=10, version=1, ttl_ms=60_000, now=NOW)


def test_empty_entries_can_be_fresh():
    record = _record(COINS_ALL, entries=[])
    assert is_fresh(record, COINS_ALL, top_n=10, version=1, ttl_ms=60_000, now=NOW)


def test_week_snapshot_from_previous_week_is_stale():
    sunday_night = NOW - timedelta(days=3)  # Sunday 2026-01-04 12:00
    record = _record(LEVEL_WEEK, at=sunday_night)
    assert is_fresh(record, LEVEL_WEEK, top_n=10, version=1, ttl_ms=3_600_000, now=sunday_night)
    assert not is_fresh(
        record,
        LEVEL_WEEK,
        top_n=10,
        version=1,
        ttl_ms=3_600_000 * 24 * 7,
        now=sunday_night + timedelta(hours=13),
    )


# -----------------------------------------------------------------------------
# Aggregator
# -----------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_coins_rebuild_end_to_end(db, fake_lock):
    await add_user(db, "u1", xp=10, scores=(60, 40))
    await add_user(db, "u2", xp=20, scores=(100,))
    await add_user(db, "u3", xp=99, scores=(50,))
    await db.commit()

    assert await rebuild_snapshot(db, COINS_ALL, top_n=10, version=1, lock=fake_lock, now=NOW)

    record = await SnapshotStore(db).read("coins:all")
    entries = record.payload["entries"]
    assert [(e["userId"], e["rank"], e["totalScore"]) for e in entries] == [
        ("u2", 1, 100),
        ("u1", 2, 100),
        ("u3", 3, 50),
    ]
    assert [medal_for(e["rank"]) for e in entries] == ["gold", "silver", "bronze"]
    assert record.payload["config"] == {"topN": 10, "version": 1}
    assert record.payload["computedAt"] == "2026-01-07T12:00:00.000Z"
    assert fake_lock.acquired == ["leaderboard:coins:all"]


@pytest.mark.asyncio
async def test_coins_rebuild_includes_users_without_sessions_and_limits(db, fake_lock):
    await add_user(db, "a", scores=(5,))
    await add_user(db, "b")
    await add_user(db, "c")
    await db.commit()

    assert await rebuild_snapshot(db, COINS_ALL, top_n=2, version=1, lock=fake_lock, now=NOW)

    entries = (await SnapshotStore(db).read("coins:all")).payload["entries"]
    assert [(e["userId"], e["totalScore"]) for e in entries] == [("a", 5), ("c", 0)]


@pytest.mark.asyncio
async def test_level_rebuild_orders_by_level_xp_coins_id(db, fake_lock):
    await add_user(db, "a", brain_level=5, xp=100, brain_coins=1)
    await add_user(db, "b", brain_level=5, xp=100, brain_coins=9)
    await add_user(db, "c", brain_level=7, xp=0)
    await add_user(db, "d", brain_level=5, xp=100, brain_coins=1)
    await db.commit()

    assert await rebuild_snapshot(db, LEVEL_ALL, top_n=10, version=3, lock=fake_lock, now=NOW)

    entries = (await SnapshotStore(db).read("level:all")).payload["entries"]
    assert [(e["userId"], e["rank"]) for e in entries] == [("c", 1), ("b", 2), ("d", 3), ("a", 4)]
    assert set(entries[0]) >= {"brainLevel", "xp", "brainCoins", "displayName", "avatarUrl"}


@pytest.mark.asyncio
async def test_week_rebuild_uses_dense_rank_within_window(db, fake_lock):
    stamp = NOW - timedelta(days=10)
    await add_user(db, "w1", brain_level=2, xp=100, brain_coins=5, updated_at=stamp)
    await add_user(db, "w2", brain_level=2, xp=100, brain_coins=5, updated_at=stamp)
    await add_user(db, "w3", brain_level=9, xp=900, brain_coins=5, updated_at=stamp)
    await add_user(db, "old", brain_level=9, xp=900, updated_at=stamp)
    await add_activity(db, "w1", MONDAY, 20)
    await add_activity(db, "w1", MONDAY + timedelta(days=1), 30)
    await add_activity(db, "w2", MONDAY + timedelta(days=2), 50)
    await add_activity(db, "w3", MONDAY, 30)
    await add_activity(db, "w3", MONDAY - timedelta(days=1), 500)  # previous week
    await add_activity(db, "old", MONDAY - timedelta(days=3), 999)
    await db.commit()

    assert await rebuild_snapshot(db, LEVEL_WEEK, top_n=10, version=1, lock=fake_lock, now=NOW)

    record = await SnapshotStore(db).read("level:week")
    entries = record.payload["entries"]
    assert [(e["userId"], e["rank"], e["weeklyXp"]) for e in entries] == [
        ("w2", 1, 50),
        ("w1", 1, 50),
        ("w3", 2, 30),
    ]
    assert record.payload["config"]["window"] == {
        "type": "week",
        "start": "2026-01-05T00:00:00.000Z",
        "end": "2026-01-12T00:00:00.000Z",
    }


@pytest.mark.asyncio
async def test_rebuild_skips_when_lock_is_busy(db):
    await add_user(db, "u1", scores=(1,))
    await db.commit()
    lock = FakeLock(held_elsewhere={"leaderboard:coins:all"})

    assert not await rebuild_snapshot(db, COINS_ALL, top_n=10, version=1, lock=lock, now=NOW)

    assert await SnapshotStore(db).read("coins:all") is None
    assert lock.acquired == []


@pytest.mark.asyncio
async def test_rebuild_failure_keeps_previous_snapshot(db, fake_lock, monkeypatch):
    store = SnapshotStore(db)
    await store.upsert("coins:all", NOW, {"entries": [], "config": {"topN": 10, "version": 1}})
    await db.commit()

    async def exploding(*args, **kwargs):
        raise RuntimeError("aggregate query failed")

    monkeypatch.setattr(ranks_service, "compute_entries", exploding)

    assert not await rebuild_snapshot(db, COINS_ALL, top_n=10, version=2, lock=fake_lock, now=NOW)

    record = await store.read("coins:all")
    assert record.payload["config"]["version"] == 1
    assert fake_lock.acquired == ["leaderboard:coins:all"]


@pytest.mark.asyncio
async def test_unknown_kind_is_not_refreshed(db, fake_lock):
    month = RankingKind("coins", "month", "totalScore")

    assert not await rebuild_snapshot(db, month, top_n=10, version=1, lock=fake_lock, now=NOW)
    assert await SnapshotStore(db).read("coins:month") is None


@pytest.mark.asyncio
async def test_rebuild_leaves_callers_uncommitted_rows_alone(db, fake_lock):
    await add_user(db, "pending", scores=(5,))

    with pytest.raises(RuntimeError):
        await rebuild_snapshot(db, COINS_ALL, top_n=10, version=1, lock=fake_lock, now=NOW)
    await db.rollback()

    assert await db.get(User, "pending") is None
    assert await SnapshotStore(db).read("coins:all") is None
    assert fake_lock.attempts == []


@pytest.mark.asyncio
async def test_rebuild_refuses_unflushed_changes(db, fake_lock):
    db.add(User(id="draft", name="Draft", created_at=NOW, updated_at=NOW))

    with pytest.raises(RuntimeError):
        await rebuild_snapshot(db, COINS_ALL, top_n=10, version=1, lock=fake_lock, now=NOW)


@pytest.mark.asyncio
async def test_uncommitted_upsert_counts_as_a_write(db):
    await SnapshotStore(db).upsert("coins:all", NOW, {"entries": [], "config": {"topN": 10, "version": 1}})
    assert has_pending_writes(db)

    await db.commit()
    assert not has_pending_writes(db)


@pytest.mark.asyncio
async def test_rebuild_after_reads_on_the_same_session(db, fake_lock):
    await add_user(db, "u1", scores=(4,))
    await db.commit()
    assert await SnapshotStore(db).read("coins:all") is None
    assert db.in_transaction()

    assert await rebuild_snapshot(db, COINS_ALL, top_n=10, version=1, lock=fake_lock, now=NOW)
    assert (await SnapshotStore(db).read("coins:all")).payload["entries"][0]["userId"] == "u1"


@pytest.mark.asyncio
async def test_upsert_replaces_existing_row(db, fake_lock):
    await add_user(db, "u1", scores=(1,))
    await db.commit()

    assert await rebuild_snapshot(db, COINS_ALL, top_n=10, version=1, lock=fake_lock, now=NOW)
    later = NOW + timedelta(minutes=5)
    assert await rebuild_snapshot(db, COINS_ALL, top_n=5, version=2, lock=fake_lock, now=later)

    record = await SnapshotStore(db).read("coins:all")
    assert record.computed_at == later
    assert record.payload["config"] == {"topN": 5, "version": 2}


@pytest.mark.asyncio
async def test_rebuild_with_default_lock_on_sqlite(db):
    await add_user(db, "u1", scores=(3,))
    await db.commit()

    assert await rebuild_snapshot(db, COINS_ALL, top_n=10, version=1, now=NOW)
    assert await rebuild_snapshot(db, COINS_ALL, top_n=10, version=1, now=NOW)
    assert (await SnapshotStore(db).read("coins:all")).payload["entries"][0]["userId"] == "u1"


# -----------------------------------------------------------------------------
# Rank Lookup
# -----------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_coins_lookup_is_strict_ordinal_and_matches_top_n(db, fake_lock):
    await add_user(db, "a", xp=5, scores=(10,))
    await add_user(db, "b", xp=5, scores=(10,))
    await add_user(db, "c", xp=5, scores=(10,))
    await add_user(db, "d", xp=50, scores=(10,))
    await add_user(db, "e")
    await db.commit()
    assert await rebuild_snapshot(db, COINS_ALL, top_n=10, version=1, lock=fake_lock, now=NOW)
    top = {
        e["userId"]: e["rank"]
        for e in (await SnapshotStore(db).read("coins:all")).payload["entries"]
    }

    live = {uid: (await lookup_coins_rank(db, uid)).rank for uid in "abcde"}

    assert live == {"d": 1, "c": 2, "b": 3, "a": 4, "e": 5}
    assert live == top
    assert len(set(live.values())) == len(live)


@pytest.mark.asyncio
async def test_coins_lookup_entry_and_missing_user(db):
    await add_user(db, "u1", name="Ann", brain_level=4, scores=(7, 8))
    await db.commit()

    mine = await lookup_coins_rank(db, "u1")

    assert mine.rank == 1
    assert mine.entry == {
        "rank": 1,
        "userId": "u1",
        "displayName": "Ann",
        "avatarUrl": "https://cdn.test/u1.png",
        "totalScore": 15,
        "brainLevel": 4,
    }
    assert await lookup_coins_rank(db, "ghost") is None


@pytest.mark.asyncio
async def test_level_all_lookup_tiebreak_chain(db):
    await add_user(db, "a", brain_level=3, xp=10, brain_coins=1)
    await add_user(db, "b", brain_level=3, xp=10, brain_coins=2)
    await add_user(db, "c", brain_level=3, xp=11, brain_coins=0)
    await add_user(db, "z", brain_level=3, xp=10, brain_coins=1)
    await db.commit()

    ranks = {uid: (await lookup_level_rank(db, uid, LEVEL_ALL)).rank for uid in "abcz"}

    assert ranks == {"c": 1, "b": 2, "z": 3, "a": 4}


@pytest.mark.asyncio
async def test_week_lookup_shares_dense_rank(db):
    stamp = NOW - timedelta(days=10)
    for uid in ("p", "q"):
        await add_user(db, uid, brain_level=2, xp=10, brain_coins=1, updated_at=stamp)
        await add_activity(db, uid, MONDAY, 40)
    await add_user(db, "r", brain_level=2, xp=10, brain_coins=1, updated_at=stamp)
    await add_activity(db, "r", MONDAY, 10)
    await add_user(db, "idle")
    await db.commit()

    p = await lookup_level_rank(db, "p", LEVEL_WEEK, now=NOW)
    q = await lookup_level_rank(db, "q", LEVEL_WEEK, now=NOW)
    r = await lookup_level_rank(db, "r", LEVEL_WEEK, now=NOW)

    assert p.rank == q.rank == 1
    assert r.rank == 2
    assert r.entry["weeklyXp"] == 10
    assert await lookup_level_rank(db, "idle", LEVEL_WEEK, now=NOW) == MyRank(rank=None, entry=None)
    assert await lookup_level_rank(db, "ghost", LEVEL_WEEK, now=NOW) is None
