# -*- coding: utf-8 -*-
# backend/app/crud/flags_crud.py
# =============================================================================
# Purpose:
#   Feature-flag store: get_flag(key) -> FlagState(enabled, payload).
#
# Rules:
#   • Missing row → disabled with an empty payload.
#   • A database error while reading → disabled, logged as WARNING; the
#     leaderboard answers "disabled" instead of 500.
#   • Non-dict payloads are treated as {}.
#   • upsert_flag() exists for seeds, tests and ops scripts; the admin
#     panel owns the table otherwise.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.logging_core import get_logger
from backend.app.models import FeatureFlag

logger = get_logger(__name__)


@dataclass(frozen=True)
class FlagState:
    enabled: bool = False
    payload: Dict[str, Any] = field(default_factory=dict)


class FlagsCRUD:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_flag(self, key: str) -> FlagState:
        try:
            row = (
                await self.session.execute(
                    select(FeatureFlag.enabled, FeatureFlag.payload).where(FeatureFlag.key == key)
                )
            ).first()
        except SQLAlchemyError:
            logger.warning("Feature flag read failed; treating as disabled", extra={"flag": key}, exc_info=True)
            await self.session.rollback()
            return FlagState()
        if row is None:
            return FlagState()
        payload = row.payload if isinstance(row.payload, dict) else {}
        return FlagState(enabled=bool(row.enabled), payload=dict(payload))

    async def upsert_flag(
        self,
        key: str,
        *,
        enabled: bool,
        payload: Optional[Dict[str, Any]] = None,
    ) -> FeatureFlag:
        flag = await self.session.get(FeatureFlag, key)
        if flag is None:
            flag = FeatureFlag(key=key, enabled=enabled, payload=dict(payload or {}))
            self.session.add(flag)
        else:
            flag.enabled = enabled
            flag.payload = dict(payload or {})
        await self.session.flush()
        return flag


__all__ = ["FlagState", "FlagsCRUD"]
