"""Async HTTP client for the deal room API.

Mirrors DealRoomService method names so AutosaveController can drive a
remote service exactly like the in-process one. Error responses are mapped
back onto the deal room error taxonomy:

- 400 -> ValidationError, or AlreadyResolvedError for code "already_resolved"
- 404 -> NotFoundError
- 409 -> ConflictError carrying the conflict id
- anything else -> StorageError wrapping the httpx error

Connection errors and timeouts also surface as StorageError. Read-only
calls retry them (tenacity, 3 attempts, exponential backoff 1-10s). Writes
are never retried: publish is not idempotent.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from src.app.deal_room.errors import (
    AlreadyResolvedError,
    ConflictError,
    NotFoundError,
    StorageError,
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

logger = structlog.get_logger(__name__)


def _is_transport_failure(exc: BaseException) -> bool:
    return isinstance(exc, StorageError) and isinstance(
        exc.cause, (httpx.ConnectError, httpx.TimeoutException)
    )


_read_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(_is_transport_failure),
    reraise=True,
)


class DealRoomClient:
    """Async client for the /v1 deal room endpoints.

    Args:
        base_url: Service root, e.g. ``http://deal-room:8000``.
        transport: Optional httpx transport (tests pass an ASGITransport).
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._transport = transport
        self._timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        """Create a new httpx client for one call."""
        return httpx.AsyncClient(
            base_url=self._base_url,
            transport=self._transport,
            timeout=self._timeout,
            headers={"Content-Type": "application/json"},
        )

    @staticmethod
    def _room_path(project_id: str, suffix: str = "") -> str:
        return f"/v1/projects/{project_id}/deal-room{suffix}"

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        **kwargs: Any,
    ) -> Any:
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            logger.warning(
                "deal_room_client.transport_error",
                operation=operation,
                method=method,
                path=path,
                error=str(exc),
            )
            raise StorageError(operation, exc) from exc
        if response.is_success:
            return response.json()
        self._raise_for_error(response, operation)

    @staticmethod
    def _raise_for_error(response: httpx.Response, operation: str) -> None:
        try:
            body = response.json()
        except ValueError:
            body = None
        detail = body.get("detail") if isinstance(body, dict) else body
        if not isinstance(detail, dict):
            detail = {"message": str(detail or response.text)}
        message = detail.get("message") or response.reason_phrase

        logger.debug(
            "deal_room_client.error_response",
            operation=operation,
            status_code=response.status_code,
            code=detail.get("code"),
        )

        if response.status_code == 400:
            if detail.get("code") == "already_resolved":
                raise AlreadyResolvedError(detail.get("conflict_id") or "")
            raise ValidationError(detail.get("errors") or [message])
        if response.status_code == 404:
            raise NotFoundError(message)
        if response.status_code == 409:
            raise ConflictError(detail.get("conflict_id") or "")
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise StorageError(operation, exc) from exc

    # ── Deal Room Content ───────────────────────────────────────────────────

    @_read_retry
    async def get_deal_room(self, project_id: str) -> DealRoom:
        data = await self._request("GET", self._room_path(project_id), "get_deal_room")
        return DealRoom.model_validate(data)

    async def update_deal_room(self, project_id: str, data: dict[str, Any]) -> DealRoom:
        body = await self._request(
            "PUT", self._room_path(project_id), "update_deal_room", json=data
        )
        return DealRoom.model_validate(body)

    @_read_retry
    async def get_completion_status(self, project_id: str) -> CompletionStatus:
        data = await self._request(
            "GET", self._room_path(project_id, "/completion-status"), "get_completion_status"
        )
        return CompletionStatus.model_validate(data)

    # ── Drafts ──────────────────────────────────────────────────────────────

    async def save_draft(
        self,
        project_id: str,
        session_id: str,
        partial_data: dict[str, Any] | None,
        is_auto_save: bool = True,
        user_id: str | None = None,
    ) -> Draft:
        data = await self._request(
            "POST",
            self._room_path(project_id, "/draft"),
            "save_draft",
            json={
                "session_id": session_id,
                "draft_data": partial_data or {},
                "is_auto_save": is_auto_save,
                "user_id": user_id,
            },
        )
        return Draft.model_validate(data)

    @_read_retry
    async def get_draft(self, project_id: str, session_id: str) -> Draft | None:
        try:
            data = await self._request(
                "GET",
                self._room_path(project_id, "/draft"),
                "get_draft",
                params={"session_id": session_id},
            )
        except NotFoundError:
            return None
        return Draft.model_validate(data)

    @_read_retry
    async def recover_unsaved_changes(self, project_id: str, session_id: str) -> Draft | None:
        data = await self._request(
            "GET",
            self._room_path(project_id, "/recover-changes"),
            "recover_unsaved_changes",
            params={"session_id": session_id},
        )
        return Draft.model_validate(data) if data else None

    async def cleanup_expired_drafts(self) -> int:
        data = await self._request("POST", "/v1/deal-room/drafts/cleanup", "cleanup_expired_drafts")
        return int(data.get("removed", 0))

    # ── Publish / Conflicts ─────────────────────────────────────────────────

    async def publish(
        self,
        project_id: str,
        session_id: str,
        change_description: str | None = None,
    ) -> PublishResult:
        data = await self._request(
            "POST",
            self._room_path(project_id, "/draft/publish"),
            "publish",
            json={"session_id": session_id, "change_description": change_description},
        )
        return PublishResult.model_validate(data)

    @_read_retry
    async def get_unresolved_conflicts(self, project_id: str) -> list[Conflict]:
        data = await self._request(
            "GET", self._room_path(project_id, "/conflicts"), "get_unresolved_conflicts"
        )
        return [Conflict.model_validate(item) for item in data]

    async def resolve_conflict(
        self,
        conflict_id: str,
        resolution: ResolutionStrategy | str,
        custom_data: dict[str, Any] | None = None,
        project_id: str | None = None,
    ) -> ResolveResult:
        if not project_id:
            raise ValidationError("Project ID is required")
        data = await self._request(
            "POST",
            self._room_path(project_id, "/resolve-conflict"),
            "resolve_conflict",
            json={
                "conflict_id": conflict_id,
                "resolution": getattr(resolution, "value", resolution),
                "custom_data": custom_data,
            },
        )
        return ResolveResult.model_validate(data)

    # ── History / Status ────────────────────────────────────────────────────

    @_read_retry
    async def get_version_history(self, project_id: str, limit: int | None = None) -> list[Version]:
        params = {"limit": limit} if limit is not None else None
        data = await self._request(
            "GET", self._room_path(project_id, "/versions"), "get_version_history", params=params
        )
        return [Version.model_validate(item) for item in data]

    async def restore_version(self, project_id: str, version_id: str, session_id: str) -> DealRoom:
        data = await self._request(
            "POST",
            self._room_path(project_id, "/restore-version"),
            "restore_version",
            json={"version_id": version_id, "session_id": session_id},
        )
        return DealRoom.model_validate(data)

    @_read_retry
    async def get_save_status(self, project_id: str, session_id: str) -> SaveStatus:
        data = await self._request(
            "GET",
            self._room_path(project_id, "/save-status"),
            "get_save_status",
            params={"session_id": session_id},
        )
        return SaveStatus.model_validate(data)

    @_read_retry
    async def get_overview(self, project_id: str, session_id: str) -> Overview:
        data = await self._request(
            "GET",
            self._room_path(project_id, "/overview"),
            "get_overview",
            params={"session_id": session_id},
        )
        return Overview.model_validate(data)
