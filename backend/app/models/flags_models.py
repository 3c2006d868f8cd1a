# -*- coding: utf-8 -*-
# backend/app/models/flags_models.py
# =============================================================================
# Purpose:
#   FeatureFlag: runtime switches edited from the admin panel. The
#   "leaderboard" row gates every leaderboard endpoint and carries the ranking
#   config in `payload`:
#       {"topN": 10, "version": 1, "snapshotTtlSeconds": 60,
#        "hideGuests": false, "weeklyEnabled": true}
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database_core import Base, JSONDocument
from ..core.utils_core import utcnow


class FeatureFlag(Base):
    __tablename__ = "feature_flags"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    payload: Mapped[Dict[str, Any]] = mapped_column(JSONDocument, nullable=False, default=dict)
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )


__all__ = ["FeatureFlag"]
