# -*- coding: utf-8 -*-
"""Seed advisory_locks with one row per ranking kind.

With the rows in place the lock-table backend only ever runs
SELECT ... FOR UPDATE SKIP LOCKED and never has to insert a row while a
concurrent contender might be inserting the same one.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision: str = "0003"
down_revision: str | None = "0002"
branch_labels = None
depends_on = None

LOCK_NAMES = (
    "leaderboard:coins:all",
    "leaderboard:level:all",
    "leaderboard:level:week",
)

advisory_locks = sa.table("advisory_locks", sa.column("name", sa.String))


def upgrade() -> None:
    existing = {
        row[0]
        for row in op.get_bind().execute(sa.select(advisory_locks.c.name)).fetchall()
    }
    missing = [{"name": name} for name in LOCK_NAMES if name not in existing]
    if missing:
        op.bulk_insert(advisory_locks, missing)


def downgrade() -> None:
    op.execute(advisory_locks.delete().where(advisory_locks.c.name.in_(LOCK_NAMES)))
