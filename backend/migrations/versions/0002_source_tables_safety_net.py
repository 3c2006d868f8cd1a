# -*- coding: utf-8 -*-
"""Source tables safety net for local and staging databases.

The auth and game services own user, session, game_sessions, daily_activity
and feature_flags. On a shared database they already exist and this revision
is a no-op (checkfirst); on a fresh local database it creates them from the
ORM metadata so the leaderboard can run standalone.
"""

from __future__ import annotations

from alembic import op

from backend.app.core.database_core import Base
from backend.app.models import MODEL_REGISTRY

revision: str = "0002"
down_revision: str | None = "0001"
branch_labels = None
depends_on = None

SOURCE_TABLES = ("user", "session", "game_sessions", "daily_activity", "feature_flags")
_ = MODEL_REGISTRY


def upgrade() -> None:
    bind = op.get_bind()
    for name in SOURCE_TABLES:
        Base.metadata.tables[name].create(bind=bind, checkfirst=True)


def downgrade() -> None:
    # Owned by other services; never dropped from here.
    pass
