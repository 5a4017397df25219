"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready) checks. Readiness
verifies the configured storage backend can serve requests.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.app.config import StorageBackend, get_settings
from src.app.core.database import get_engine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check.

    No external dependencies are checked -- just that the server is running.
    """
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(request: Request) -> dict:
    """Check the deal room service and, for the SQL backend, the database."""
    settings = get_settings()
    checks: dict = {"service": "ok", "storage": settings.STORAGE_BACKEND.value}

    if getattr(request.app.state, "deal_room_service", None) is None:
        checks["service"] = "error"

    if settings.STORAGE_BACKEND == StorageBackend.sql:
        try:
            engine = get_engine()
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception as e:
            checks["database"] = "error"
            checks["database_error"] = str(e)

    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: returns 200 if all checks pass, 503 otherwise."""
    checks = await _check_dependencies(request)
    all_healthy = checks.get("service") == "ok" and checks.get("database", "ok") == "ok"

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if all_healthy else "degraded",
            "checks": checks,
        },
    )
