"""Deal room storage backends.

Abstract store interfaces plus an in-memory backend (tests, local
development) and an async SQLAlchemy backend (production).
"""

from src.app.deal_room.store.adapter import (
    ConflictStore,
    DealRoomStore,
    DraftStore,
    VersionStore,
)

__all__ = ["ConflictStore", "DealRoomStore", "DraftStore", "VersionStore"]
