"""Autosave controller for one editing session.

Buffers field edits, writes them as a draft after a quiet period (debounce),
and mirrors the session's save status for an editor UI. Works against any
backend exposing the DealRoomService method names: the in-process service
or DealRoomClient over HTTP.

Status transitions:
- queue_edit: unsaved
- save in flight: saving
- draft written: unsaved (the draft is ahead of the published deal room)
- publish succeeded: saved
- publish conflicted: conflict, sticky until resolve_conflict()
- any failure: error, with the message
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import structlog

from src.app.config import get_settings
from src.app.deal_room.errors import ConflictError, ValidationError
from src.app.deal_room.schemas import (
    Draft,
    PublishResult,
    ResolutionStrategy,
    ResolveResult,
    SaveState,
    SaveStatus,
)

logger = structlog.get_logger(__name__)


class AutosaveController:
    """Debounced draft saving plus save-status mirroring for one session.

    Args:
        backend: DealRoomService or DealRoomClient.
        project_id: Project being edited.
        session_id: This editor's session id.
        user_id: Optional author credited on publish.
        debounce_seconds: Quiet period after the last edit before autosaving;
            defaults to AUTOSAVE_DEBOUNCE_SECONDS.
        enabled: When False, edits are only written by save_now().
        validator: Optional callable returning a list of error messages for
            a pending field set; a non-empty list blocks the save.
        on_conflict: Called with the conflict id when publish conflicts.
        on_save_success: Called with the stored Draft after each save.
        on_save_error: Called with the error message after a failed save.
    """

    def __init__(
        self,
        backend: Any,
        project_id: str,
        session_id: str,
        *,
        user_id: str | None = None,
        debounce_seconds: float | None = None,
        enabled: bool = True,
        validator: Callable[[dict[str, Any]], list[str]] | None = None,
        on_conflict: Callable[[str], None] | None = None,
        on_save_success: Callable[[Draft], None] | None = None,
        on_save_error: Callable[[str], None] | None = None,
    ) -> None:
        self._backend = backend
        self.project_id = project_id
        self.session_id = session_id
        self.user_id = user_id
        if debounce_seconds is None:
            debounce_seconds = get_settings().AUTOSAVE_DEBOUNCE_SECONDS
        self.debounce_seconds = debounce_seconds
        self.enabled = enabled
        self._validator = validator
        self._on_conflict = on_conflict
        self._on_save_success = on_save_success
        self._on_save_error = on_save_error

        self._pending: dict[str, Any] = {}
        self._timer: asyncio.Task | None = None
        self.status = SaveStatus(status=SaveState.SAVED, has_unsaved_changes=False, version=0)

    # ── Properties ──────────────────────────────────────────────────────────

    @property
    def has_unsaved_changes(self) -> bool:
        return bool(self._pending) or self.status.has_unsaved_changes

    @property
    def conflict_id(self) -> str | None:
        return self.status.conflict_id

    @property
    def pending(self) -> dict[str, Any]:
        return dict(self._pending)

    # ── Editing ─────────────────────────────────────────────────────────────

    def queue_edit(self, fields: dict[str, Any]) -> None:
        """Merge edits into the pending set and restart the debounce timer."""
        self._pending.update(fields)
        self._set_status(SaveState.UNSAVED, has_unsaved_changes=True)
        if self.enabled:
            self._cancel_timer()
            self._timer = asyncio.create_task(self._debounced_save())

    async def _debounced_save(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        # Past the sleep the timer can no longer be cancelled mid-save.
        self._timer = None
        await self._save(is_auto_save=True)

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def save_now(self, fields: dict[str, Any] | None = None) -> Draft | None:
        """Cancel the timer and write pending edits immediately (manual save)."""
        self._cancel_timer()
        if fields:
            self._pending.update(fields)
        return await self._save(is_auto_save=False)

    async def _save(self, is_auto_save: bool) -> Draft | None:
        data, self._pending = self._pending, {}

        if self._validator is not None:
            errors = self._validator(data)
            if errors:
                self._pending = {**data, **self._pending}
                self._fail(f"Validation failed: {', '.join(errors)}")
                return None

        self._set_status(SaveState.SAVING, has_unsaved_changes=True)
        try:
            draft = await self._backend.save_draft(
                self.project_id,
                self.session_id,
                data,
                is_auto_save=is_auto_save,
                user_id=self.user_id,
            )
        except Exception as exc:
            # Keep the edits so the next save retries them.
            self._pending = {**data, **self._pending}
            logger.warning(
                "autosave.save_failed",
                project_id=self.project_id,
                session_id=self.session_id,
                is_auto_save=is_auto_save,
                exc_info=True,
            )
            self._fail(str(exc) or exc.__class__.__name__)
            return None

        self._set_status(
            SaveState.UNSAVED,
            has_unsaved_changes=True,
            version=draft.version,
            last_auto_save=draft.updated_at if is_auto_save else self.status.last_auto_save,
            error=None,
        )
        if self._on_save_success is not None:
            self._on_save_success(draft)
        return draft

    # ── Publish / Conflicts ─────────────────────────────────────────────────

    async def publish(self, change_description: str | None = None) -> PublishResult | None:
        """Flush pending edits, then publish the draft.

        On conflict the controller records the conflict id, calls on_conflict
        and stops; it never retries the publish by itself.
        """
        self._cancel_timer()
        if self._pending:
            if await self._save(is_auto_save=False) is None:
                return None

        try:
            result = await self._backend.publish(
                self.project_id, self.session_id, change_description
            )
        except ConflictError as exc:
            self._set_status(
                SaveState.CONFLICT,
                has_unsaved_changes=True,
                conflict_id=exc.conflict_id,
            )
            logger.info(
                "autosave.publish_conflicted",
                project_id=self.project_id,
                session_id=self.session_id,
                conflict_id=exc.conflict_id,
            )
            if self._on_conflict is not None:
                self._on_conflict(exc.conflict_id)
            return None
        except Exception as exc:
            logger.warning(
                "autosave.publish_failed",
                project_id=self.project_id,
                session_id=self.session_id,
                exc_info=True,
            )
            self._fail(str(exc) or exc.__class__.__name__)
            return None

        self.status = SaveStatus(
            status=SaveState.SAVED,
            has_unsaved_changes=False,
            version=self.status.version,
            last_saved=datetime.now(timezone.utc),
            last_auto_save=self.status.last_auto_save,
        )
        return result

    async def resolve_conflict(
        self,
        resolution: ResolutionStrategy | str,
        custom_data: dict[str, Any] | None = None,
    ) -> ResolveResult:
        """Resolve the recorded conflict and clear the conflict status.

        Raises:
            ValidationError: If no conflict is recorded.
        """
        if self.status.conflict_id is None:
            raise ValidationError("No conflict to resolve")
        result = await self._backend.resolve_conflict(
            self.status.conflict_id,
            resolution,
            custom_data,
            project_id=self.project_id,
        )
        self.status = SaveStatus(
            status=SaveState.SAVED,
            has_unsaved_changes=False,
            version=self.status.version,
            last_saved=datetime.now(timezone.utc),
        )
        return result

    # ── Server sync ─────────────────────────────────────────────────────────

    async def refresh_status(self) -> SaveStatus:
        """Replace the mirrored status with the server's projection."""
        self.status = await self._backend.get_save_status(self.project_id, self.session_id)
        return self.status

    async def recover(self) -> Draft | None:
        """Return the server draft if it holds unpublished changes."""
        draft = await self._backend.recover_unsaved_changes(self.project_id, self.session_id)
        if draft is not None:
            self._set_status(SaveState.UNSAVED, has_unsaved_changes=True, version=draft.version)
        return draft

    async def close(self) -> None:
        """Cancel a pending timer without saving."""
        timer = self._timer
        self._cancel_timer()
        if timer is not None:
            try:
                await timer
            except asyncio.CancelledError:
                pass

    # ── Internals ───────────────────────────────────────────────────────────

    def _set_status(self, state: SaveState, **changes: Any) -> None:
        # Conflict sticks until resolve_conflict() replaces the whole status.
        if self.status.status == SaveState.CONFLICT and state != SaveState.CONFLICT:
            self.status = self.status.model_copy(update={k: v for k, v in changes.items() if k == "version"})
            return
        self.status = self.status.model_copy(update={"status": state, **changes})

    def _fail(self, message: str) -> None:
        self._set_status(SaveState.ERROR, has_unsaved_changes=True, error=message)
        if self._on_save_error is not None:
            self._on_save_error(message)
