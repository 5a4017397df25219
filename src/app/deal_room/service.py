"""DealRoomService -- draft, publish, conflict and version orchestration.

The service owns every rule of the draft/version/conflict engine and talks
to storage only through the four store interfaces:

- Drafts are per (project, session) and autosaved without locking; each save
  increments the draft's own counter.
- Publish compares the draft's concurrency token (``last_saved_version``, or
  ``base_version`` before the first publish) with the latest published
  version. When another session has published since, differing fields abort
  the publish and record a Conflict.
- Publish, restore and conflict resolution for one project run under a
  per-project asyncio.Lock; across processes the version store's
  compare-and-swap keeps the history gapless.

Validation happens before any write. DealRoomError subclasses propagate
unchanged; any other failure from a store is wrapped in StorageError.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator, Callable, Iterator, Mapping
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from src.app.core.monitoring import (
    conflicts_resolved_total,
    drafts_expired_total,
    drafts_saved_total,
    publishes_total,
)
from src.app.deal_room.conflicts import ITEM_LINK_KEYS, detect_conflicts, resolve_field_set
from src.app.deal_room.errors import (
    AlreadyResolvedError,
    ConflictError,
    DealRoomError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from src.app.deal_room.schemas import (
    CONTENT_FIELDS,
    CompletionStatus,
    Conflict,
    ConflictType,
    DealRoom,
    Draft,
    Overview,
    PublishResult,
    ResolutionStrategy,
    ResolveResult,
    SaveState,
    SaveStatus,
    SectionStatus,
    Version,
)
from src.app.deal_room.store.adapter import (
    ConflictStore,
    DealRoomStore,
    DraftStore,
    VersionStore,
)
from src.app.deal_room.validation import require_id, validate_field_set

logger = structlog.get_logger(__name__)

DEFAULT_DRAFT_RETENTION = timedelta(hours=24)
DEFAULT_HISTORY_LIMIT = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


@contextmanager
def _storage_guard(operation: str) -> Iterator[None]:
    """Re-raise deal room errors as-is, wrap anything else in StorageError."""
    try:
        yield
    except DealRoomError:
        raise
    except Exception as exc:
        logger.error("deal_room.storage_failed", operation=operation, exc_info=True)
        raise StorageError(operation, exc) from exc


def _with_item_ids(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Give every array item a unique id, generating missing or repeated ones."""
    result = dict(fields)
    for field in ITEM_LINK_KEYS:
        items = result.get(field)
        if items is None:
            continue
        seen: set[str] = set()
        assigned = []
        for item in items:
            item = dict(item)
            if not item.get("id") or item["id"] in seen:
                item["id"] = _new_id()
            seen.add(item["id"])
            assigned.append(item)
        result[field] = assigned
    return result


class DealRoomService:
    """Orchestrates drafts, publishes, conflicts and version history.

    Args:
        deal_rooms: Store for live deal room content.
        drafts: Store for per-session drafts.
        versions: Append-only store for published snapshots.
        conflicts: Store for conflicts recorded by failed publishes.
        draft_retention: Age after which an untouched draft is swept.
        history_limit: Default number of versions returned by history reads.
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        deal_rooms: DealRoomStore,
        drafts: DraftStore,
        versions: VersionStore,
        conflicts: ConflictStore,
        *,
        draft_retention: timedelta = DEFAULT_DRAFT_RETENTION,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._deal_rooms = deal_rooms
        self._drafts = drafts
        self._versions = versions
        self._conflicts = conflicts
        self._draft_retention = draft_retention
        self._history_limit = history_limit
        self._clock = clock or _utcnow
        self._locks: dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def _project_lock(self, project_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(project_id, asyncio.Lock())
        async with lock:
            yield

    # ── Deal Room Content ───────────────────────────────────────────────────

    async def get_deal_room(self, project_id: str) -> DealRoom:
        """Get the project's deal room, creating an empty one on first access."""
        require_id(project_id, "Project ID")
        with _storage_guard("get_deal_room"):
            return await self._deal_rooms.get_or_create(project_id)

    async def update_deal_room(self, project_id: str, data: Mapping[str, Any]) -> DealRoom:
        """Overwrite the present fields of the live deal room directly.

        This is the non-draft edit path: no draft, no version, no conflict
        check.

        Raises:
            ValidationError: If any present field is invalid.
        """
        require_id(project_id, "Project ID")
        fields = validate_field_set(data)
        async with self._project_lock(project_id):
            with _storage_guard("update_deal_room"):
                deal_room = await self._deal_rooms.get_or_create(project_id)
                updated = await self._apply(deal_room, fields)
        logger.info(
            "deal_room.updated",
            project_id=project_id,
            fields=sorted(fields),
        )
        return updated

    async def get_completion_status(self, project_id: str) -> CompletionStatus:
        """Report which of the five deal room sections are filled in."""
        deal_room = await self.get_deal_room(project_id)
        sections = SectionStatus(
            showcase_photo=deal_room.showcase_photo is not None,
            investment_blurb=bool(deal_room.investment_blurb.strip()),
            investment_summary=bool(deal_room.investment_summary.strip()),
            key_info=len(deal_room.key_info) > 0,
            external_links=len(deal_room.external_links) > 0,
        )
        completed = [name for name in CONTENT_FIELDS if getattr(sections, name)]
        total = len(CONTENT_FIELDS)
        return CompletionStatus(
            completion_percentage=round(len(completed) / total * 100),
            completed_sections=completed,
            total_sections=total,
            section_status=sections,
        )

    # ── Drafts ──────────────────────────────────────────────────────────────

    async def save_draft(
        self,
        project_id: str,
        session_id: str,
        partial_data: Mapping[str, Any] | None,
        is_auto_save: bool = True,
        user_id: str | None = None,
    ) -> Draft:
        """Create or update the session's draft.

        The first save records the project's latest published version as the
        draft's base. Later saves shallow-merge the present fields (arrays are
        replaced wholesale) and bump the draft version.

        Args:
            project_id: Project the draft belongs to.
            session_id: Editing session id.
            partial_data: Fields to write; only present fields are validated.
            is_auto_save: Whether the save was triggered by the autosave timer.
            user_id: Optional author, credited when the draft is published.

        Returns:
            The stored draft.

        Raises:
            ValidationError: If an id is blank or a present field is invalid.
        """
        require_id(project_id, "Project ID")
        require_id(session_id, "Session ID")
        fields = validate_field_set(partial_data)

        with _storage_guard("save_draft"):
            now = self._clock()
            existing = await self._drafts.get(project_id, session_id)
            if existing is None:
                latest = await self._versions.latest(project_id)
                draft = Draft(
                    id=_new_id(),
                    project_id=project_id,
                    session_id=session_id,
                    user_id=user_id,
                    draft_data=fields,
                    version=1,
                    base_version=latest.version if latest else 0,
                    last_saved_version=None,
                    is_auto_save=is_auto_save,
                    created_at=now,
                    updated_at=now,
                )
            else:
                draft = existing.model_copy(
                    update={
                        "draft_data": {**existing.draft_data, **fields},
                        "version": existing.version + 1,
                        "is_auto_save": is_auto_save,
                        "user_id": user_id or existing.user_id,
                        "updated_at": now,
                    }
                )
            saved = await self._drafts.save(draft)

        drafts_saved_total.labels(mode="auto" if is_auto_save else "manual").inc()
        logger.info(
            "deal_room.draft_saved",
            project_id=project_id,
            session_id=session_id,
            version=saved.version,
            is_auto_save=is_auto_save,
            fields=sorted(fields),
        )
        return saved

    async def get_draft(self, project_id: str, session_id: str) -> Draft | None:
        """Fetch the session's draft, or None."""
        require_id(project_id, "Project ID")
        require_id(session_id, "Session ID")
        with _storage_guard("get_draft"):
            return await self._drafts.get(project_id, session_id)

    async def recover_unsaved_changes(self, project_id: str, session_id: str) -> Draft | None:
        """Return the session's draft if it holds changes not yet published."""
        draft = await self.get_draft(project_id, session_id)
        if draft is None or not draft.has_unsaved_changes:
            return None
        return draft

    async def cleanup_expired_drafts(self) -> int:
        """Delete drafts not updated within the retention window.

        Returns:
            Number of drafts removed.
        """
        cutoff = self._clock() - self._draft_retention
        with _storage_guard("cleanup_expired_drafts"):
            removed = await self._drafts.delete_expired(cutoff)
        if removed:
            drafts_expired_total.inc(removed)
        logger.info("deal_room.drafts_expired", removed=removed, cutoff=cutoff.isoformat())
        return removed

    # ── Publish ─────────────────────────────────────────────────────────────

    async def publish(
        self,
        project_id: str,
        session_id: str,
        change_description: str | None = None,
    ) -> PublishResult:
        """Publish the session's draft to the live deal room.

        Raises:
            NotFoundError: If the session has no draft.
            ConflictError: If another session published differing values
                since this draft was last reconciled. The draft and the deal
                room are left untouched.
            StorageError: If a store fails.
        """
        require_id(project_id, "Project ID")
        require_id(session_id, "Session ID")

        async with self._project_lock(project_id):
            with _storage_guard("publish"):
                draft = await self._drafts.get(project_id, session_id)
                if draft is None:
                    publishes_total.labels(outcome="not_found").inc()
                    raise NotFoundError("No draft found to publish")

                deal_room = await self._deal_rooms.get_or_create(project_id)
                latest = await self._versions.latest(project_id)
                latest_number = latest.version if latest else 0

                if latest_number > draft.expected_version:
                    await self._check_divergence(draft, deal_room, latest_number)

                now = self._clock()
                updated = await self._apply(deal_room, draft.draft_data)
                version = await self._append_version(
                    updated,
                    expected_latest=latest_number,
                    change_description=change_description,
                    created_by=draft.user_id,
                    created_at=now,
                )
                await self._drafts.save(
                    draft.model_copy(
                        update={
                            "last_saved_version": version.version,
                            "published_draft_version": draft.version,
                            "updated_at": now,
                        }
                    )
                )

        publishes_total.labels(outcome="published").inc()
        logger.info(
            "deal_room.published",
            project_id=project_id,
            session_id=session_id,
            version=version.version,
            draft_version=draft.version,
        )
        return PublishResult(deal_room=updated, version=version)

    async def _check_divergence(self, draft: Draft, deal_room: DealRoom, latest_number: int) -> None:
        """Record a conflict and raise if the draft differs from the live data."""
        server_data = deal_room.content()
        conflict_fields = detect_conflicts(draft.draft_data, server_data)
        if not conflict_fields:
            return

        conflict = await self._conflicts.create(
            Conflict(
                id=_new_id(),
                project_id=draft.project_id,
                session_id=draft.session_id,
                user_id=draft.user_id,
                conflict_type=ConflictType.CONCURRENT_EDIT,
                local_version=draft.version,
                server_version=latest_number,
                local_data={**server_data, **draft.draft_data},
                server_data=server_data,
                conflict_fields=conflict_fields,
                created_at=self._clock(),
            )
        )
        publishes_total.labels(outcome="conflict").inc()
        logger.warning(
            "deal_room.conflict_detected",
            project_id=draft.project_id,
            session_id=draft.session_id,
            conflict_id=conflict.id,
            expected_version=draft.expected_version,
            latest_version=latest_number,
            conflict_fields=conflict_fields,
        )
        raise ConflictError(conflict.id)

    # ── Conflicts ───────────────────────────────────────────────────────────

    async def get_unresolved_conflicts(self, project_id: str) -> list[Conflict]:
        """List the project's unresolved conflicts, oldest first."""
        require_id(project_id, "Project ID")
        with _storage_guard("get_unresolved_conflicts"):
            return await self._conflicts.list_unresolved(project_id)

    async def resolve_conflict(
        self,
        conflict_id: str,
        resolution: ResolutionStrategy | str,
        custom_data: Mapping[str, Any] | None = None,
        project_id: str | None = None,
    ) -> ResolveResult:
        """Resolve a conflict into the live deal room and a new version.

        Supplying custom_data forces the manual strategy. use_local keeps the
        session's draft and marks it reconciled up to the draft version the
        conflict captured, so later edits stay unpublished; every other
        strategy deletes the draft.

        Args:
            conflict_id: Conflict to resolve.
            resolution: use_local, use_server, merge or manual.
            custom_data: Field set to publish verbatim (manual).
            project_id: When given, the conflict must belong to this project.

        Raises:
            ValidationError: Unknown strategy, manual without custom data, or
                invalid custom data.
            NotFoundError: Unknown conflict or project mismatch.
            AlreadyResolvedError: The conflict was resolved before.
        """
        require_id(conflict_id, "Conflict ID")
        try:
            strategy = ResolutionStrategy(resolution)
        except ValueError:
            raise ValidationError(f"Invalid resolution strategy: {resolution}") from None

        custom_fields: dict[str, Any] | None = None
        if custom_data is not None:
            strategy = ResolutionStrategy.MANUAL
            custom_fields = validate_field_set(custom_data)
        elif strategy == ResolutionStrategy.MANUAL:
            raise ValidationError("Custom data is required for manual resolution")

        with _storage_guard("resolve_conflict"):
            conflict = await self._conflicts.get(conflict_id)
        if conflict is None or (project_id is not None and conflict.project_id != project_id):
            raise NotFoundError(f"Conflict not found: {conflict_id}")

        async with self._project_lock(conflict.project_id):
            with _storage_guard("resolve_conflict"):
                conflict = await self._conflicts.get(conflict_id)
                if conflict is None:
                    raise NotFoundError(f"Conflict not found: {conflict_id}")
                if conflict.is_resolved:
                    raise AlreadyResolvedError(conflict_id)

                resolved_data = resolve_field_set(
                    strategy, conflict.local_data, conflict.server_data, custom_fields
                )

                now = self._clock()
                deal_room = await self._deal_rooms.get_or_create(conflict.project_id)
                latest = await self._versions.latest(conflict.project_id)
                updated = await self._apply(deal_room, resolved_data)
                version = await self._append_version(
                    updated,
                    expected_latest=latest.version if latest else 0,
                    change_description=f"Conflict resolved using {strategy.value} strategy",
                    created_by=conflict.user_id,
                    created_at=now,
                )
                resolved = await self._conflicts.mark_resolved(
                    conflict_id, strategy, resolved_data, now
                )

                if strategy == ResolutionStrategy.USE_LOCAL:
                    draft = await self._drafts.get(conflict.project_id, conflict.session_id)
                    if draft is not None:
                        await self._drafts.save(
                            draft.model_copy(
                                update={
                                    "last_saved_version": version.version,
                                    # Edits saved after the conflict stay unpublished.
                                    "published_draft_version": conflict.local_version,
                                    "updated_at": now,
                                }
                            )
                        )
                else:
                    await self._drafts.delete(conflict.project_id, conflict.session_id)

        conflicts_resolved_total.labels(resolution=strategy.value).inc()
        logger.info(
            "deal_room.conflict_resolved",
            project_id=conflict.project_id,
            session_id=conflict.session_id,
            conflict_id=conflict_id,
            resolution=strategy.value,
            version=version.version,
        )
        return ResolveResult(deal_room=updated, conflict=resolved, version=version)

    # ── Version History ─────────────────────────────────────────────────────

    async def get_version_history(self, project_id: str, limit: int | None = None) -> list[Version]:
        """List published versions, most recent first."""
        require_id(project_id, "Project ID")
        if limit is None:
            limit = self._history_limit
        if limit < 1:
            raise ValidationError("Limit must be a positive number")
        with _storage_guard("get_version_history"):
            return await self._versions.list_recent(project_id, limit)

    async def restore_version(self, project_id: str, version_id: str, session_id: str) -> DealRoom:
        """Overwrite the deal room with an earlier snapshot.

        Appends "Restored to version N" credited to the snapshot's author and
        discards the session's draft.

        Raises:
            NotFoundError: If the version does not exist in this project.
        """
        require_id(project_id, "Project ID")
        require_id(version_id, "Version ID")
        require_id(session_id, "Session ID")

        async with self._project_lock(project_id):
            with _storage_guard("restore_version"):
                target = await self._versions.get(version_id)
                if target is None or target.project_id != project_id:
                    raise NotFoundError("Version not found")

                deal_room = await self._deal_rooms.get_or_create(project_id)
                latest = await self._versions.latest(project_id)
                updated = await self._apply(deal_room, target.data, replace=True)
                version = await self._append_version(
                    updated,
                    expected_latest=latest.version if latest else 0,
                    change_description=f"Restored to version {target.version}",
                    created_by=target.created_by,
                    created_at=self._clock(),
                )
                await self._drafts.delete(project_id, session_id)

        logger.info(
            "deal_room.version_restored",
            project_id=project_id,
            session_id=session_id,
            restored_version=target.version,
            version=version.version,
        )
        return updated

    # ── Save Status ─────────────────────────────────────────────────────────

    async def get_save_status(self, project_id: str, session_id: str) -> SaveStatus:
        """Project the session's save state for display.

        Never raises for storage failures: they are reported as an ``error``
        status so the editor keeps working.
        """
        require_id(project_id, "Project ID")
        require_id(session_id, "Session ID")
        try:
            draft = await self._drafts.get(project_id, session_id)
            unresolved = await self._conflicts.list_unresolved(project_id)
        except Exception as exc:
            logger.warning(
                "deal_room.save_status_failed",
                project_id=project_id,
                session_id=session_id,
                exc_info=True,
            )
            return SaveStatus(
                status=SaveState.ERROR,
                has_unsaved_changes=True,
                version=0,
                error=str(exc) or exc.__class__.__name__,
            )

        session_conflicts = [c for c in unresolved if c.session_id == session_id]
        if session_conflicts:
            return SaveStatus(
                status=SaveState.CONFLICT,
                has_unsaved_changes=True,
                version=draft.version if draft else 0,
                conflict_id=session_conflicts[0].id,
            )

        if draft is None:
            return SaveStatus(status=SaveState.SAVED, has_unsaved_changes=False, version=0)

        unsaved = draft.has_unsaved_changes
        return SaveStatus(
            status=SaveState.UNSAVED if unsaved else SaveState.SAVED,
            has_unsaved_changes=unsaved,
            version=draft.version,
            last_saved=draft.updated_at if draft.last_saved_version is not None else None,
            last_auto_save=draft.updated_at if draft.is_auto_save else None,
        )

    # ── Overview ────────────────────────────────────────────────────────────

    async def get_overview(self, project_id: str, session_id: str) -> Overview:
        """Gather the dashboard view concurrently.

        Each piece is best effort: a failure is logged and the piece falls
        back to None or an empty list.
        """
        require_id(project_id, "Project ID")
        require_id(session_id, "Session ID")

        names = ("deal_room", "completion", "save_status", "recent_versions", "unresolved_conflicts")
        results = await asyncio.gather(
            self.get_deal_room(project_id),
            self.get_completion_status(project_id),
            self.get_save_status(project_id, session_id),
            self.get_version_history(project_id),
            self.get_unresolved_conflicts(project_id),
            return_exceptions=True,
        )

        pieces: dict[str, Any] = {}
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "deal_room.overview_piece_failed",
                    project_id=project_id,
                    piece=name,
                    error=str(result),
                )
                continue
            pieces[name] = result
        return Overview(**pieces)

    # ── Internals ───────────────────────────────────────────────────────────

    async def _apply(
        self,
        deal_room: DealRoom,
        fields: Mapping[str, Any],
        *,
        replace: bool = False,
    ) -> DealRoom:
        """Write a field set onto the deal room and persist it.

        With replace=True every content field not in ``fields`` is reset to
        its empty default, so the result equals the field set exactly.
        """
        payload = deal_room.model_dump(mode="json")
        if replace:
            empty = DealRoom(id=deal_room.id, project_id=deal_room.project_id)
            payload.update(empty.model_dump(mode="json", include=set(CONTENT_FIELDS)))
        payload.update(_with_item_ids({k: v for k, v in fields.items() if k in CONTENT_FIELDS}))
        payload["updated_at"] = self._clock()
        return await self._deal_rooms.save(DealRoom.model_validate(payload))

    async def _append_version(
        self,
        deal_room: DealRoom,
        *,
        expected_latest: int,
        change_description: str | None,
        created_by: str | None,
        created_at: datetime,
    ) -> Version:
        """Append a snapshot of the just-written deal room.

        A failure here leaves the deal room ahead of its history, so it is
        logged as a data integrity event before propagating.
        """
        try:
            return await self._versions.append(
                deal_room.project_id,
                deal_room.content(),
                expected_latest,
                change_description=change_description,
                created_by=created_by,
                created_at=created_at,
            )
        except Exception:
            logger.error(
                "deal_room.version_append_failed",
                project_id=deal_room.project_id,
                expected_latest=expected_latest,
                data_integrity=True,
                exc_info=True,
            )
            raise
