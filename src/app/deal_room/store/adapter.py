"""Store abstract base classes -- the persistence interface the service depends on.

Every storage backend (in-memory, SQLAlchemy) implements these four ABCs.
DealRoomService only talks to these interfaces, so backends are swappable
per deployment via the STORAGE_BACKEND setting.

Contract shared by all backends:
- Reads return detached Pydantic copies; mutating them never changes storage.
- Writes are atomic per record.
- VersionStore.append is a compare-and-swap on the latest version number.
- ConflictStore.mark_resolved succeeds at most once per conflict.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from src.app.deal_room.schemas import (
    Conflict,
    DealRoom,
    Draft,
    ResolutionStrategy,
    Version,
)


class DealRoomStore(ABC):
    """Live deal room content, one record per project."""

    @abstractmethod
    async def get(self, project_id: str) -> DealRoom | None:
        """Fetch the deal room of a project."""
        ...

    @abstractmethod
    async def get_or_create(self, project_id: str) -> DealRoom:
        """Fetch the deal room, creating an empty one if none exists."""
        ...

    @abstractmethod
    async def save(self, deal_room: DealRoom) -> DealRoom:
        """Persist every content field of the deal room, return the stored copy."""
        ...


class DraftStore(ABC):
    """Per-session drafts, unique per (project_id, session_id)."""

    @abstractmethod
    async def get(self, project_id: str, session_id: str) -> Draft | None:
        """Fetch the draft of one session."""
        ...

    @abstractmethod
    async def save(self, draft: Draft) -> Draft:
        """Insert or replace the draft for its (project_id, session_id)."""
        ...

    @abstractmethod
    async def delete(self, project_id: str, session_id: str) -> bool:
        """Delete the draft of one session, return True if one existed."""
        ...

    @abstractmethod
    async def delete_expired(self, cutoff: datetime) -> int:
        """Delete drafts last updated before cutoff, return the count."""
        ...


class VersionStore(ABC):
    """Append-only published snapshots."""

    @abstractmethod
    async def latest(self, project_id: str) -> Version | None:
        """Fetch the highest-numbered version of a project."""
        ...

    @abstractmethod
    async def get(self, version_id: str) -> Version | None:
        """Fetch a version by id."""
        ...

    @abstractmethod
    async def list_recent(self, project_id: str, limit: int) -> list[Version]:
        """List up to limit versions, most recent first."""
        ...

    @abstractmethod
    async def append(
        self,
        project_id: str,
        data: dict[str, Any],
        expected_latest: int,
        change_description: str | None = None,
        created_by: str | None = None,
        created_at: datetime | None = None,
    ) -> Version:
        """Append version expected_latest + 1.

        Raises:
            VersionSequenceError: If the project's latest version is no longer
                expected_latest.
        """
        ...


class ConflictStore(ABC):
    """Conflicts recorded by failed publishes."""

    @abstractmethod
    async def create(self, conflict: Conflict) -> Conflict:
        """Persist a new conflict."""
        ...

    @abstractmethod
    async def get(self, conflict_id: str) -> Conflict | None:
        """Fetch a conflict by id."""
        ...

    @abstractmethod
    async def list_unresolved(self, project_id: str) -> list[Conflict]:
        """List unresolved conflicts of a project, oldest first."""
        ...

    @abstractmethod
    async def mark_resolved(
        self,
        conflict_id: str,
        resolution: ResolutionStrategy,
        resolved_data: dict[str, Any],
        resolved_at: datetime,
    ) -> Conflict:
        """Record the resolution on an unresolved conflict.

        Raises:
            NotFoundError: If the conflict does not exist.
            AlreadyResolvedError: If it was resolved already.
        """
        ...
