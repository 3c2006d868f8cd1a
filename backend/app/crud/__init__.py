"""Data-access layer of the leaderboard service.

Only reads/writes rows; ranking, freshness and locking live in services.
"""

from backend.app.crud.flags_crud import FlagState, FlagsCRUD
from backend.app.crud.ranks_crud import SnapshotLookup, SnapshotRecord, SnapshotStore

__all__ = [
    "FlagState",
    "FlagsCRUD",
    "SnapshotLookup",
    "SnapshotRecord",
    "SnapshotStore",
]
