"""FastAPI dependency injection for deal room resources.

The DealRoomService is built once during application startup and stored on
app.state; endpoints receive it through get_deal_room_service.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from src.app.deal_room.service import DealRoomService


def get_deal_room_service(request: Request) -> DealRoomService:
    """Retrieve DealRoomService from app.state, 503 if not available."""
    service = getattr(request.app.state, "deal_room_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "unavailable", "message": "Deal room service not initialized"},
        )
    return service
