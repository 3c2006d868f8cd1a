# -*- coding: utf-8 -*-
# backend/app/crud/ranks_crud.py
# =============================================================================
# Purpose:
#   Snapshot Store: data access for leaderboard_snapshots.
#   • read(kind)          one row or None;
#   • read_first(lookup)  explicit lookup chain (scoped kind, then legacy
#                         unscoped kinds), first hit wins;
#   • upsert(...)         INSERT ... ON CONFLICT (kind) DO UPDATE.
#
# Rules:
#   • No ranking or freshness logic here; services decide.
#   • Legacy kinds are read-only: upsert is only ever called with the
#     scoped kind being rebuilt.
#   • Reads return plain records (not ORM instances), so a read after an
#     upsert in the same session sees the new row.
#   • Commit is the caller's responsibility.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.utils_core import to_utc
from backend.app.models import LeaderboardSnapshot


@dataclass(frozen=True)
class SnapshotRecord:
    kind: str
    computed_at: datetime
    payload: Dict[str, Any]


@dataclass(frozen=True)
class SnapshotLookup:
    """Ordered kinds to read: primary first, then read-only fallbacks."""

    primary: str
    fallbacks: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def chain(self) -> Tuple[str, ...]:
        return (self.primary, *self.fallbacks)


class SnapshotStore:
    """CRUD wrapper over leaderboard_snapshots, no ranking logic."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def read(self, kind: str) -> Optional[SnapshotRecord]:
        row = (
            await self.session.execute(
                select(
                    LeaderboardSnapshot.kind,
                    LeaderboardSnapshot.computed_at,
                    LeaderboardSnapshot.payload,
                ).where(LeaderboardSnapshot.kind == kind)
            )
        ).first()
        if row is None:
            return None
        return SnapshotRecord(
            kind=row.kind,
            computed_at=to_utc(row.computed_at),
            payload=dict(row.payload or {}),
        )

    async def read_first(self, lookup: SnapshotLookup) -> Optional[SnapshotRecord]:
        for kind in lookup.chain:
            record = await self.read(kind)
            if record is not None:
                return record
        return None

    async def upsert(
        self,
        kind: str,
        computed_at: datetime,
        payload: Dict[str, Any],
    ) -> None:
        """Replace the whole row for `kind` (insert when absent)."""
        values = {"kind": kind, "computed_at": computed_at, "payload": payload}
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = pg_insert(LeaderboardSnapshot).values(**values)
        elif dialect == "sqlite":
            stmt = sqlite_insert(LeaderboardSnapshot).values(**values)
        else:
            await self.session.merge(LeaderboardSnapshot(**values))
            await self.session.flush()
            return
        stmt = stmt.on_conflict_do_update(
            index_elements=[LeaderboardSnapshot.kind],
            set_={
                "computed_at": stmt.excluded.computed_at,
                "payload": stmt.excluded.payload,
            },
        )
        await self.session.execute(stmt)


__all__ = ["SnapshotRecord", "SnapshotLookup", "SnapshotStore"]
