"""REST API endpoints for the deal room draft/version/conflict engine.

All project-scoped routes live under /projects/{project_id}/deal-room and
delegate to DealRoomService from app.state. Deal room errors are mapped to
HTTP status codes:

- ValidationError, AlreadyResolvedError -> 400
- NotFoundError -> 404
- ConflictError -> 409 (detail carries conflict_id)
- StorageError -> 500
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from src.app.api.deps import get_deal_room_service
from src.app.deal_room.errors import (
    AlreadyResolvedError,
    ConflictError,
    DealRoomError,
    NotFoundError,
    ValidationError,
)
from src.app.deal_room.schemas import (
    CompletionStatus,
    Conflict,
    DealRoom,
    Draft,
    Overview,
    PublishResult,
    ResolutionStrategy,
    ResolveResult,
    SaveStatus,
    Version,
)
from src.app.deal_room.service import DealRoomService

router = APIRouter(prefix="/projects/{project_id}/deal-room", tags=["deal-room"])
maintenance_router = APIRouter(prefix="/deal-room", tags=["deal-room"])


# ── Request Schemas ──────────────────────────────────────────────────────────


class SaveDraftRequest(BaseModel):
    """Request body for saving a draft."""

    session_id: str
    draft_data: dict[str, Any] = Field(default_factory=dict)
    is_auto_save: bool = True
    user_id: str | None = None


class PublishRequest(BaseModel):
    """Request body for publishing a session's draft."""

    session_id: str
    change_description: str | None = None


class RestoreVersionRequest(BaseModel):
    """Request body for restoring a version."""

    version_id: str
    session_id: str


class ResolveConflictRequest(BaseModel):
    """Request body for resolving a conflict."""

    conflict_id: str
    resolution: ResolutionStrategy
    custom_data: dict[str, Any] | None = None


class CleanupResponse(BaseModel):
    """Number of expired drafts removed."""

    removed: int


# ── Error Mapping ────────────────────────────────────────────────────────────


def _to_http_error(exc: DealRoomError) -> HTTPException:
    """Translate a deal room error into an HTTPException."""
    if isinstance(exc, ValidationError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "validation_error", "message": str(exc), "errors": exc.errors},
        )
    if isinstance(exc, AlreadyResolvedError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "already_resolved",
                "message": str(exc),
                "conflict_id": exc.conflict_id,
            },
        )
    if isinstance(exc, NotFoundError):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "not_found", "message": str(exc)},
        )
    if isinstance(exc, ConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "conflict", "message": str(exc), "conflict_id": exc.conflict_id},
        )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"code": "storage_error", "message": str(exc)},
    )


# ── Deal Room Content ────────────────────────────────────────────────────────


@router.get("", response_model=DealRoom)
async def get_deal_room(
    project_id: str,
    service: DealRoomService = Depends(get_deal_room_service),
) -> DealRoom:
    """Get the deal room, creating an empty one on first access."""
    try:
        return await service.get_deal_room(project_id)
    except DealRoomError as exc:
        raise _to_http_error(exc) from exc


@router.put("", response_model=DealRoom)
async def update_deal_room(
    project_id: str,
    body: dict[str, Any],
    service: DealRoomService = Depends(get_deal_room_service),
) -> DealRoom:
    """Overwrite the given fields of the live deal room (no version)."""
    try:
        return await service.update_deal_room(project_id, body)
    except DealRoomError as exc:
        raise _to_http_error(exc) from exc


@router.get("/completion-status", response_model=CompletionStatus)
async def get_completion_status(
    project_id: str,
    service: DealRoomService = Depends(get_deal_room_service),
) -> CompletionStatus:
    """Per-section completion of the deal room."""
    try:
        return await service.get_completion_status(project_id)
    except DealRoomError as exc:
        raise _to_http_error(exc) from exc


# ── Drafts ───────────────────────────────────────────────────────────────────


@router.get("/draft", response_model=Draft)
async def get_draft(
    project_id: str,
    session_id: str = Query(...),
    service: DealRoomService = Depends(get_deal_room_service),
) -> Draft:
    """Get the session's draft."""
    try:
        draft = await service.get_draft(project_id, session_id)
    except DealRoomError as exc:
        raise _to_http_error(exc) from exc
    if draft is None:
        raise _to_http_error(NotFoundError("No draft found"))
    return draft


@router.post("/draft", response_model=Draft)
async def save_draft(
    project_id: str,
    body: SaveDraftRequest,
    service: DealRoomService = Depends(get_deal_room_service),
) -> Draft:
    """Create or update the session's draft."""
    try:
        return await service.save_draft(
            project_id,
            body.session_id,
            body.draft_data,
            is_auto_save=body.is_auto_save,
            user_id=body.user_id,
        )
    except DealRoomError as exc:
        raise _to_http_error(exc) from exc


@router.post("/draft/publish", response_model=PublishResult)
async def publish_draft(
    project_id: str,
    body: PublishRequest,
    service: DealRoomService = Depends(get_deal_room_service),
) -> PublishResult:
    """Publish the session's draft; 409 with conflict_id on divergence."""
    try:
        return await service.publish(project_id, body.session_id, body.change_description)
    except DealRoomError as exc:
        raise _to_http_error(exc) from exc


@router.get("/save-status", response_model=SaveStatus)
async def get_save_status(
    project_id: str,
    session_id: str = Query(...),
    service: DealRoomService = Depends(get_deal_room_service),
) -> SaveStatus:
    """Save status of the session (never fails on storage errors)."""
    try:
        return await service.get_save_status(project_id, session_id)
    except DealRoomError as exc:
        raise _to_http_error(exc) from exc


@router.get("/recover-changes", response_model=Draft | None)
async def recover_changes(
    project_id: str,
    session_id: str = Query(...),
    service: DealRoomService = Depends(get_deal_room_service),
) -> Draft | None:
    """The session's draft if it holds unpublished changes, else null."""
    try:
        return await service.recover_unsaved_changes(project_id, session_id)
    except DealRoomError as exc:
        raise _to_http_error(exc) from exc


# ── Versions ─────────────────────────────────────────────────────────────────


@router.get("/versions", response_model=list[Version])
async def list_versions(
    project_id: str,
    limit: int | None = Query(default=None, ge=1, le=100),
    service: DealRoomService = Depends(get_deal_room_service),
) -> list[Version]:
    """Version history, most recent first."""
    try:
        return await service.get_version_history(project_id, limit)
    except DealRoomError as exc:
        raise _to_http_error(exc) from exc


@router.post("/restore-version", response_model=DealRoom)
async def restore_version(
    project_id: str,
    body: RestoreVersionRequest,
    service: DealRoomService = Depends(get_deal_room_service),
) -> DealRoom:
    """Restore an earlier version; the session's draft is discarded."""
    try:
        return await service.restore_version(project_id, body.version_id, body.session_id)
    except DealRoomError as exc:
        raise _to_http_error(exc) from exc


# ── Conflicts ────────────────────────────────────────────────────────────────


@router.get("/conflicts", response_model=list[Conflict])
async def list_conflicts(
    project_id: str,
    service: DealRoomService = Depends(get_deal_room_service),
) -> list[Conflict]:
    """Unresolved conflicts of the project."""
    try:
        return await service.get_unresolved_conflicts(project_id)
    except DealRoomError as exc:
        raise _to_http_error(exc) from exc


@router.post("/resolve-conflict", response_model=ResolveResult)
async def resolve_conflict(
    project_id: str,
    body: ResolveConflictRequest,
    service: DealRoomService = Depends(get_deal_room_service),
) -> ResolveResult:
    """Resolve a conflict of this project."""
    try:
        return await service.resolve_conflict(
            body.conflict_id,
            body.resolution,
            body.custom_data,
            project_id=project_id,
        )
    except DealRoomError as exc:
        raise _to_http_error(exc) from exc


# ── Overview ─────────────────────────────────────────────────────────────────


@router.get("/overview", response_model=Overview)
async def get_overview(
    project_id: str,
    session_id: str = Query(...),
    service: DealRoomService = Depends(get_deal_room_service),
) -> Overview:
    """Deal room, completion, save status, recent versions and conflicts."""
    try:
        return await service.get_overview(project_id, session_id)
    except DealRoomError as exc:
        raise _to_http_error(exc) from exc


# ── Maintenance ──────────────────────────────────────────────────────────────


@maintenance_router.post("/drafts/cleanup", response_model=CleanupResponse)
async def cleanup_drafts(
    service: DealRoomService = Depends(get_deal_room_service),
) -> CleanupResponse:
    """Run the draft retention sweep now."""
    try:
        removed = await service.cleanup_expired_drafts()
    except DealRoomError as exc:
        raise _to_http_error(exc) from exc
    return CleanupResponse(removed=removed)
