"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan events that build the deal room stores and service, the draft
retention sweep, and the v1 API router.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator
from datetime import timedelta

import structlog
from fastapi import FastAPI, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import JSONResponse, Response

from src.app.config import Settings, StorageBackend, get_settings
from src.app.core.database import close_db, get_session_factory, init_db
from src.app.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.app.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.app.api.v1.router import router as v1_router
from src.app.deal_room.scheduler import setup_draft_cleanup, start_cleanup_background
from src.app.deal_room.service import DealRoomService


def build_deal_room_service(settings: Settings) -> DealRoomService:
    """Wire the stores selected by STORAGE_BACKEND into a DealRoomService."""
    if settings.STORAGE_BACKEND == StorageBackend.sql:
        from src.app.deal_room.store.sql import (
            SqlConflictStore,
            SqlDealRoomStore,
            SqlDraftStore,
            SqlVersionStore,
        )

        session_factory = get_session_factory()
        stores = (
            SqlDealRoomStore(session_factory),
            SqlDraftStore(session_factory),
            SqlVersionStore(session_factory),
            SqlConflictStore(session_factory),
        )
    else:
        from src.app.deal_room.store.memory import (
            InMemoryConflictStore,
            InMemoryDealRoomStore,
            InMemoryDraftStore,
            InMemoryVersionStore,
        )

        stores = (
            InMemoryDealRoomStore(),
            InMemoryDraftStore(),
            InMemoryVersionStore(),
            InMemoryConflictStore(),
        )

    return DealRoomService(
        *stores,
        draft_retention=timedelta(hours=settings.DRAFT_RETENTION_HOURS),
        history_limit=settings.VERSION_HISTORY_LIMIT,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init storage, service and sweep; tear down on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    if settings.STORAGE_BACKEND == StorageBackend.sql:
        await init_db()

    service = build_deal_room_service(settings)
    app.state.deal_room_service = service
    log.info(
        "deal_room.service_initialized",
        storage_backend=settings.STORAGE_BACKEND.value,
        draft_retention_hours=settings.DRAFT_RETENTION_HOURS,
    )

    cleanup_tasks = setup_draft_cleanup(service)
    await start_cleanup_background(
        cleanup_tasks,
        app.state,
        interval=settings.DRAFT_CLEANUP_INTERVAL_SECONDS,
    )

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    for task_ref in getattr(app.state, "draft_cleanup_tasks", None) or []:
        task_ref.cancel()
        try:
            await task_ref
        except asyncio.CancelledError:
            pass
    log.info("deal_room.cleanup_stopped")

    app.state.deal_room_service = None
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Deal Room API",
        version="0.1.0",
        description="Draft, publish, version and conflict engine for investor deal rooms",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    # Malformed request bodies are validation failures like any other: 400
    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "detail": {
                    "code": "validation_error",
                    "message": "; ".join(errors),
                    "errors": errors,
                }
            },
        )

    # Include v1 API router (health, deal room)
    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
