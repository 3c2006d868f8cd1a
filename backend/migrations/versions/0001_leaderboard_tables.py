# -*- coding: utf-8 -*-
"""Leaderboard-owned tables: leaderboard_snapshots, advisory_locks.

leaderboard_snapshots holds one row per ranking kind ("coins:all",
"level:all", "level:week", plus legacy "coins"/"level" rows that are only
read). advisory_locks backs the lock-table fallback on engines without
pg_try_advisory_xact_lock.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "0001"
down_revision: str | None = None
branch_labels = None
depends_on = None

JSON_DOCUMENT = sa.JSON().with_variant(JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "leaderboard_snapshots",
        sa.Column("kind", sa.String(length=64), nullable=False),
        sa.Column(
            "computed_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("payload", JSON_DOCUMENT, nullable=False),
        sa.PrimaryKeyConstraint("kind", name="pk_leaderboard_snapshots"),
    )
    op.create_table(
        "advisory_locks",
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("name", name="pk_advisory_locks"),
    )


def downgrade() -> None:
    op.drop_table("advisory_locks")
    op.drop_table("leaderboard_snapshots")
