"""SQLAlchemy store backend -- async persistence for all deal room entities.

Each store takes an ``async_sessionmaker`` and opens one short-lived session
per operation. Serialization between Pydantic schemas and ORM models is
handled by the ``_model_to_*`` helpers; field sets travel as JSON.

The version append relies on the (project_id, version) unique constraint:
two writers racing for the same number cannot both commit, and the loser
surfaces as VersionSequenceError.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.app.deal_room.errors import AlreadyResolvedError, NotFoundError, VersionSequenceError
from src.app.deal_room.models import ConflictModel, DealRoomModel, DraftModel, VersionModel
from src.app.deal_room.schemas import (
    Conflict,
    ConflictType,
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

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; all stored timestamps are UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _model_to_deal_room(model: DealRoomModel) -> DealRoom:
    """Convert DealRoomModel to DealRoom schema."""
    return DealRoom.model_validate(
        {
            "id": model.id,
            "project_id": model.project_id,
            "showcase_photo": model.showcase_photo,
            "investment_blurb": model.investment_blurb or "",
            "investment_summary": model.investment_summary or "",
            "key_info": model.key_info or [],
            "external_links": model.external_links or [],
            "created_at": _as_utc(model.created_at),
            "updated_at": _as_utc(model.updated_at),
        }
    )


def _model_to_draft(model: DraftModel) -> Draft:
    """Convert DraftModel to Draft schema."""
    return Draft(
        id=model.id,
        project_id=model.project_id,
        session_id=model.session_id,
        user_id=model.user_id,
        draft_data=model.draft_data or {},
        version=model.version,
        base_version=model.base_version,
        last_saved_version=model.last_saved_version,
        published_draft_version=model.published_draft_version,
        is_auto_save=model.is_auto_save,
        created_at=_as_utc(model.created_at),
        updated_at=_as_utc(model.updated_at),
    )


def _model_to_version(model: VersionModel) -> Version:
    """Convert VersionModel to Version schema."""
    return Version(
        id=model.id,
        project_id=model.project_id,
        version=model.version,
        data=model.data or {},
        change_description=model.change_description,
        created_by=model.created_by,
        created_at=_as_utc(model.created_at),
    )


def _model_to_conflict(model: ConflictModel) -> Conflict:
    """Convert ConflictModel to Conflict schema."""
    return Conflict(
        id=model.id,
        project_id=model.project_id,
        session_id=model.session_id,
        user_id=model.user_id,
        conflict_type=ConflictType(model.conflict_type),
        local_version=model.local_version,
        server_version=model.server_version,
        local_data=model.local_data or {},
        server_data=model.server_data or {},
        conflict_fields=list(model.conflict_fields or []),
        created_at=_as_utc(model.created_at),
        resolved_at=_as_utc(model.resolved_at),
        resolution=ResolutionStrategy(model.resolution) if model.resolution else None,
        resolved_data=model.resolved_data,
    )


def _deal_room_columns(deal_room: DealRoom) -> dict[str, Any]:
    dumped = deal_room.model_dump(mode="json")
    return {
        "showcase_photo": dumped["showcase_photo"],
        "investment_blurb": deal_room.investment_blurb,
        "investment_summary": deal_room.investment_summary,
        "key_info": dumped["key_info"],
        "external_links": dumped["external_links"],
        "updated_at": deal_room.updated_at,
    }


# ── Deal Rooms ──────────────────────────────────────────────────────────────


class SqlDealRoomStore(DealRoomStore):
    """Deal rooms in the ``deal_rooms`` table.

    Args:
        session_factory: async_sessionmaker producing AsyncSession instances.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, project_id: str) -> DealRoom | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DealRoomModel).where(DealRoomModel.project_id == project_id)
            )
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_deal_room(model)

    async def get_or_create(self, project_id: str) -> DealRoom:
        """Fetch the deal room, inserting an empty row on first access.

        A concurrent insert for the same project loses on the unique
        constraint and re-reads the winner's row.
        """
        existing = await self.get(project_id)
        if existing is not None:
            return existing

        async with self._session_factory() as session:
            model = DealRoomModel(project_id=project_id)
            session.add(model)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.debug("deal_room.create_raced", project_id=project_id)
            else:
                await session.refresh(model)
                return _model_to_deal_room(model)

        winner = await self.get(project_id)
        if winner is None:
            raise NotFoundError(f"Deal room not found for project: {project_id}")
        return winner

    async def save(self, deal_room: DealRoom) -> DealRoom:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DealRoomModel).where(DealRoomModel.project_id == deal_room.project_id)
            )
            model = result.scalar_one_or_none()
            if model is None:
                model = DealRoomModel(
                    id=deal_room.id,
                    project_id=deal_room.project_id,
                    created_at=deal_room.created_at,
                )
                session.add(model)
            for key, value in _deal_room_columns(deal_room).items():
                setattr(model, key, value)
            await session.commit()
            await session.refresh(model)
            return _model_to_deal_room(model)


# ── Drafts ──────────────────────────────────────────────────────────────────


class SqlDraftStore(DraftStore):
    """Drafts in the ``deal_room_drafts`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, project_id: str, session_id: str) -> Draft | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DraftModel).where(
                    DraftModel.project_id == project_id,
                    DraftModel.session_id == session_id,
                )
            )
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_draft(model)

    async def save(self, draft: Draft) -> Draft:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DraftModel).where(
                    DraftModel.project_id == draft.project_id,
                    DraftModel.session_id == draft.session_id,
                )
            )
            model = result.scalar_one_or_none()
            if model is None:
                model = DraftModel(
                    id=draft.id,
                    project_id=draft.project_id,
                    session_id=draft.session_id,
                    created_at=draft.created_at,
                )
                session.add(model)
            model.user_id = draft.user_id
            model.draft_data = dict(draft.draft_data)
            model.version = draft.version
            model.base_version = draft.base_version
            model.last_saved_version = draft.last_saved_version
            model.published_draft_version = draft.published_draft_version
            model.is_auto_save = draft.is_auto_save
            model.updated_at = draft.updated_at
            await session.commit()
            await session.refresh(model)
            return _model_to_draft(model)

    async def delete(self, project_id: str, session_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(DraftModel).where(
                    DraftModel.project_id == project_id,
                    DraftModel.session_id == session_id,
                )
            )
            await session.commit()
            return (result.rowcount or 0) > 0

    async def delete_expired(self, cutoff: datetime) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(DraftModel).where(DraftModel.updated_at < cutoff)
            )
            await session.commit()
            return result.rowcount or 0


# ── Versions ────────────────────────────────────────────────────────────────


class SqlVersionStore(VersionStore):
    """Versions in the ``deal_room_versions`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _max_version(self, session: AsyncSession, project_id: str) -> int:
        result = await session.execute(
            select(func.max(VersionModel.version)).where(VersionModel.project_id == project_id)
        )
        return result.scalar_one_or_none() or 0

    async def latest(self, project_id: str) -> Version | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(VersionModel)
                .where(VersionModel.project_id == project_id)
                .order_by(VersionModel.version.desc())
                .limit(1)
            )
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_version(model)

    async def get(self, version_id: str) -> Version | None:
        async with self._session_factory() as session:
            model = await session.get(VersionModel, version_id)
            if model is None:
                return None
            return _model_to_version(model)

    async def list_recent(self, project_id: str, limit: int) -> list[Version]:
        if limit <= 0:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(VersionModel)
                .where(VersionModel.project_id == project_id)
                .order_by(VersionModel.version.desc())
                .limit(limit)
            )
            return [_model_to_version(m) for m in result.scalars().all()]

    async def append(
        self,
        project_id: str,
        data: dict[str, Any],
        expected_latest: int,
        change_description: str | None = None,
        created_by: str | None = None,
        created_at: datetime | None = None,
    ) -> Version:
        async with self._session_factory() as session:
            actual = await self._max_version(session, project_id)
            if actual != expected_latest:
                raise VersionSequenceError(project_id, expected_latest, actual)

            model = VersionModel(
                project_id=project_id,
                version=expected_latest + 1,
                data=dict(data),
                change_description=change_description,
                created_by=created_by,
                created_at=created_at or datetime.now(timezone.utc),
            )
            session.add(model)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                actual = await self._max_version(session, project_id)
                raise VersionSequenceError(project_id, expected_latest, actual) from exc
            await session.refresh(model)
            return _model_to_version(model)


# ── Conflicts ───────────────────────────────────────────────────────────────


class SqlConflictStore(ConflictStore):
    """Conflicts in the ``deal_room_conflicts`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, conflict: Conflict) -> Conflict:
        async with self._session_factory() as session:
            model = ConflictModel(
                id=conflict.id,
                project_id=conflict.project_id,
                session_id=conflict.session_id,
                user_id=conflict.user_id,
                conflict_type=conflict.conflict_type.value,
                local_version=conflict.local_version,
                server_version=conflict.server_version,
                local_data=dict(conflict.local_data),
                server_data=dict(conflict.server_data),
                conflict_fields=list(conflict.conflict_fields),
                created_at=conflict.created_at,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_conflict(model)

    async def get(self, conflict_id: str) -> Conflict | None:
        async with self._session_factory() as session:
            model = await session.get(ConflictModel, conflict_id)
            if model is None:
                return None
            return _model_to_conflict(model)

    async def list_unresolved(self, project_id: str) -> list[Conflict]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ConflictModel)
                .where(
                    ConflictModel.project_id == project_id,
                    ConflictModel.resolved_at.is_(None),
                )
                .order_by(ConflictModel.created_at.asc())
            )
            return [_model_to_conflict(m) for m in result.scalars().all()]

    async def mark_resolved(
        self,
        conflict_id: str,
        resolution: ResolutionStrategy,
        resolved_data: dict[str, Any],
        resolved_at: datetime,
    ) -> Conflict:
        """Resolve with a conditional UPDATE so only one resolver can win."""
        async with self._session_factory() as session:
            result = await session.execute(
                update(ConflictModel)
                .where(
                    ConflictModel.id == conflict_id,
                    ConflictModel.resolved_at.is_(None),
                )
                .values(
                    resolved_at=resolved_at,
                    resolution=resolution.value,
                    resolved_data=dict(resolved_data),
                )
            )
            await session.commit()

            model = await session.get(ConflictModel, conflict_id)
            if model is None:
                raise NotFoundError(f"Conflict not found: {conflict_id}")
            if (result.rowcount or 0) == 0:
                raise AlreadyResolvedError(conflict_id)
            await session.refresh(model)
            return _model_to_conflict(model)
