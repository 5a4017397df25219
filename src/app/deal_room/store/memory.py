"""In-memory store backend.

Dict-backed implementations of the four store ABCs. Each store guards its
state with an asyncio.Lock so every write is atomic per record and the
version append is a true compare-and-swap within one process. Records are
deep-copied on the way in and out.

Used by the test suite and by STORAGE_BACKEND=memory for local development.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any

from src.app.deal_room.errors import AlreadyResolvedError, NotFoundError, VersionSequenceError
from src.app.deal_room.schemas import (
    Conflict,
    DealRoom,
    Draft,
    ResolutionStrategy,
    Version,
)
from src.app.deal_room.store.adapter import (
    ConflictStore,
    DealRoomStore,
    DraftStore,
    VersionStore,
)


class InMemoryDealRoomStore(DealRoomStore):
    """Deal rooms keyed by project_id."""

    def __init__(self) -> None:
        self._rooms: dict[str, DealRoom] = {}
        self._lock = asyncio.Lock()

    async def get(self, project_id: str) -> DealRoom | None:
        room = self._rooms.get(project_id)
        return room.model_copy(deep=True) if room else None

    async def get_or_create(self, project_id: str) -> DealRoom:
        async with self._lock:
            room = self._rooms.get(project_id)
            if room is None:
                room = DealRoom(id=uuid.uuid4().hex, project_id=project_id)
                self._rooms[project_id] = room
            return room.model_copy(deep=True)

    async def save(self, deal_room: DealRoom) -> DealRoom:
        async with self._lock:
            self._rooms[deal_room.project_id] = deal_room.model_copy(deep=True)
            return deal_room.model_copy(deep=True)


class InMemoryDraftStore(DraftStore):
    """Drafts keyed by (project_id, session_id)."""

    def __init__(self) -> None:
        self._drafts: dict[tuple[str, str], Draft] = {}
        self._lock = asyncio.Lock()

    async def get(self, project_id: str, session_id: str) -> Draft | None:
        draft = self._drafts.get((project_id, session_id))
        return draft.model_copy(deep=True) if draft else None

    async def save(self, draft: Draft) -> Draft:
        async with self._lock:
            self._drafts[(draft.project_id, draft.session_id)] = draft.model_copy(deep=True)
            return draft.model_copy(deep=True)

    async def delete(self, project_id: str, session_id: str) -> bool:
        async with self._lock:
            return self._drafts.pop((project_id, session_id), None) is not None

    async def delete_expired(self, cutoff: datetime) -> int:
        async with self._lock:
            expired = [key for key, draft in self._drafts.items() if draft.updated_at < cutoff]
            for key in expired:
                del self._drafts[key]
            return len(expired)


class InMemoryVersionStore(VersionStore):
    """Per-project version lists, ascending by number."""

    def __init__(self) -> None:
        self._versions: dict[str, list[Version]] = {}
        self._by_id: dict[str, Version] = {}
        self._lock = asyncio.Lock()

    async def latest(self, project_id: str) -> Version | None:
        versions = self._versions.get(project_id)
        return versions[-1].model_copy(deep=True) if versions else None

    async def get(self, version_id: str) -> Version | None:
        version = self._by_id.get(version_id)
        return version.model_copy(deep=True) if version else None

    async def list_recent(self, project_id: str, limit: int) -> list[Version]:
        versions = self._versions.get(project_id, [])
        return [v.model_copy(deep=True) for v in reversed(versions[-limit:])] if limit > 0 else []

    async def append(
        self,
        project_id: str,
        data: dict[str, Any],
        expected_latest: int,
        change_description: str | None = None,
        created_by: str | None = None,
        created_at: datetime | None = None,
    ) -> Version:
        async with self._lock:
            versions = self._versions.setdefault(project_id, [])
            actual = versions[-1].version if versions else 0
            if actual != expected_latest:
                raise VersionSequenceError(project_id, expected_latest, actual)
            version = Version(
                id=uuid.uuid4().hex,
                project_id=project_id,
                version=actual + 1,
                data=data,
                change_description=change_description,
                created_by=created_by,
                created_at=created_at or datetime.now(timezone.utc),
            ).model_copy(deep=True)
            versions.append(version)
            self._by_id[version.id] = version
            return version.model_copy(deep=True)


class InMemoryConflictStore(ConflictStore):
    """Conflicts keyed by id, in creation order."""

    def __init__(self) -> None:
        self._conflicts: dict[str, Conflict] = {}
        self._lock = asyncio.Lock()

    async def create(self, conflict: Conflict) -> Conflict:
        async with self._lock:
            self._conflicts[conflict.id] = conflict.model_copy(deep=True)
            return conflict.model_copy(deep=True)

    async def get(self, conflict_id: str) -> Conflict | None:
        conflict = self._conflicts.get(conflict_id)
        return conflict.model_copy(deep=True) if conflict else None

    async def list_unresolved(self, project_id: str) -> list[Conflict]:
        return [
            c.model_copy(deep=True)
            for c in self._conflicts.values()
            if c.project_id == project_id and c.resolved_at is None
        ]

    async def mark_resolved(
        self,
        conflict_id: str,
        resolution: ResolutionStrategy,
        resolved_data: dict[str, Any],
        resolved_at: datetime,
    ) -> Conflict:
        async with self._lock:
            conflict = self._conflicts.get(conflict_id)
            if conflict is None:
                raise NotFoundError(f"Conflict not found: {conflict_id}")
            if conflict.resolved_at is not None:
                raise AlreadyResolvedError(conflict_id)
            resolved = conflict.model_copy(
                update={
                    "resolved_at": resolved_at,
                    "resolution": resolution,
                    "resolved_data": dict(resolved_data),
                },
                deep=True,
            )
            self._conflicts[conflict_id] = resolved
            return resolved.model_copy(deep=True)
