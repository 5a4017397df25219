"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.app.api.v1 import deal_room, health

router = APIRouter()

router.include_router(health.router)
router.include_router(deal_room.router, prefix="/v1")
router.include_router(deal_room.maintenance_router, prefix="/v1")
