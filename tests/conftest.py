"""
Shared fixtures of the leaderboard test suite.

- Settings come from the environment, so it is pinned before any backend
  import: in-memory aiosqlite (StaticPool, one DB per test), a known
  signing secret, ENV=test.
- `engine` creates every table per test and disposes the global engine on
  teardown, so the next test starts from an empty database.
- `FakeLock` replaces the advisory lock wherever contention is simulated.
- Seed helpers write the collaborator tables (user, session, game_sessions,
  daily_activity, feature_flags) the way the auth/game services would.
"""

from __future__ import annotations

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["AUTH_SECRET"] = "test-secret"
os.environ["ENV"] = "test"
os.environ["LEADERBOARD_WARMER_ENABLED"] = "false"
os.environ["LOCK_BACKEND"] = "auto"
os.environ.pop("BETTER_AUTH_SECRET", None)

import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Set

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from backend.app import create_app
from backend.app.core.database_core import Base, dispose_engine, get_engine, get_session_factory
from backend.app.core.security_core import sign_session_token
from backend.app.core.system_locks import AdvisoryLock
from backend.app.crud.flags_crud import FlagsCRUD
from backend.app.models import AuthSession, DailyActivity, GameSession, User

TEST_SECRET = "test-secret"
# Wednesday; its ISO week starts Monday 2026-01-05.
NOW = datetime(2026, 1, 7, 12, 0, 0, tzinfo=timezone.utc)


# -----------------------------------------------------------------------------
# Database
# -----------------------------------------------------------------------------
@pytest_asyncio.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    eng = get_engine()
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await dispose_engine()


@pytest_asyncio.fixture
async def db(engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    async with get_session_factory()() as session:
        yield session


@pytest_asyncio.fixture
async def client(engine: AsyncEngine) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=create_app())
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# -----------------------------------------------------------------------------
# Lock double
# -----------------------------------------------------------------------------
class FakeLock(AdvisoryLock):
    """Records acquisitions; names in `held_elsewhere` are always busy."""

    backend = "fake"

    def __init__(self, held_elsewhere: Optional[Set[str]] = None) -> None:
        self.held_elsewhere: Set[str] = set(held_elsewhere or ())
        self.acquired: List[str] = []
        self.attempts: List[str] = []

    async def try_acquire(self, session: AsyncSession, name: str) -> bool:
        self.attempts.append(name)
        if name in self.held_elsewhere:
            return False
        self.acquired.append(name)
        return True


@pytest.fixture
def fake_lock() -> FakeLock:
    return FakeLock()


# -----------------------------------------------------------------------------
# Seed helpers
# -----------------------------------------------------------------------------
async def add_user(
    db: AsyncSession,
    user_id: str,
    *,
    name: Optional[str] = None,
    xp: int = 0,
    brain_level: int = 1,
    brain_coins: int = 0,
    scores: tuple = (),
    updated_at: Optional[datetime] = None,
) -> User:
    stamp = updated_at or NOW - timedelta(days=30)
    user = User(
        id=user_id,
        name=name or user_id.title(),
        image=f"https://cdn.test/{user_id}.png",
        xp=xp,
        brain_level=brain_level,
        brain_coins=brain_coins,
        created_at=stamp,
        updated_at=stamp,
    )
    db.add(user)
    for score in scores:
        db.add(GameSession(user_id=user_id, game_mode="dual", n_level=2, score=score, accuracy=80))
    await db.flush()
    return user


async def add_activity(db: AsyncSession, user_id: str, day: date, total_xp: int) -> None:
    db.add(DailyActivity(user_id=user_id, date=day, total_xp=total_xp, sessions_count=1))
    await db.flush()


async def add_session(
    db: AsyncSession,
    user_id: str,
    *,
    token: Optional[str] = None,
    expires_at: Optional[datetime] = None,
) -> str:
    """Create an auth session and return its signed cookie value."""
    token = token or uuid.uuid4().hex
    db.add(
        AuthSession(
            id=uuid.uuid4().hex,
            token=token,
            user_id=user_id,
            expires_at=expires_at or datetime.now(timezone.utc) + timedelta(days=7),
        )
    )
    await db.flush()
    return sign_session_token(token, TEST_SECRET)


async def set_flag(
    db: AsyncSession,
    *,
    enabled: bool = True,
    key: str = "leaderboard",
    **payload: Any,
) -> None:
    await FlagsCRUD(db).upsert_flag(key, enabled=enabled, payload=payload)


def session_cookie(value: str) -> Dict[str, str]:
    return {"Cookie": f"better-auth.session_token={value}"}
