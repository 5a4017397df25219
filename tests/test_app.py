"""Tests for application wiring: settings, lifespan, middleware, health and metrics."""

from __future__ import annotations

from unittest.mock import patch

from httpx import ASGITransport, AsyncClient

from src.app.config import Environment, Settings, StorageBackend
from src.app.core.monitoring import _tag_project, http_requests_total, init_sentry
from src.app.deal_room.service import DealRoomService
from src.app.deal_room.store.memory import InMemoryDraftStore
from src.app.main import build_deal_room_service, create_app


def _make_settings(**overrides) -> Settings:
    """Create a Settings instance without reading a local .env file."""
    return Settings(_env_file=None, **overrides)


# ── Settings ────────────────────────────────────────────────────────────────


class TestSettings:
    """Defaults and overrides."""

    def test_defaults(self):
        settings = _make_settings()

        assert settings.STORAGE_BACKEND == StorageBackend.memory
        assert settings.ENVIRONMENT == Environment.development
        assert settings.DRAFT_RETENTION_HOURS == 24
        assert settings.AUTOSAVE_DEBOUNCE_SECONDS == 2.0
        assert settings.VERSION_HISTORY_LIMIT == 10

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("STORAGE_BACKEND", "sql")
        monkeypatch.setenv("DRAFT_RETENTION_HOURS", "48")

        settings = _make_settings()

        assert settings.STORAGE_BACKEND == StorageBackend.sql
        assert settings.DRAFT_RETENTION_HOURS == 48


class TestBuildDealRoomService:
    """Store selection."""

    def test_memory_backend(self):
        service = build_deal_room_service(_make_settings())

        assert isinstance(service, DealRoomService)
        assert isinstance(service._drafts, InMemoryDraftStore)

    async def test_retention_comes_from_settings(self, clock):
        service = build_deal_room_service(_make_settings(DRAFT_RETENTION_HOURS=1))
        service._clock = clock

        await service.save_draft("proj-app", "s1", {"investment_blurb": "x"})
        clock.advance(hours=2)

        assert await service.cleanup_expired_drafts() == 1


# ── HTTP surface ────────────────────────────────────────────────────────────


class TestAppEndpoints:
    """The full app with lifespan run."""

    async def test_lifespan_wires_service(self):
        app = create_app()

        async with app.router.lifespan_context(app):
            assert isinstance(app.state.deal_room_service, DealRoomService)
            assert len(app.state.draft_cleanup_tasks) == 1

            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                ready = await client.get("/health/ready")
                assert ready.status_code == 200
                assert ready.json()["checks"]["service"] == "ok"

                resp = await client.post(
                    "/v1/projects/proj-app/deal-room/draft",
                    json={"session_id": "s1", "draft_data": {"investment_blurb": "Hi"}},
                    headers={"X-Request-ID": "req-123"},
                )
                assert resp.status_code == 200
                assert resp.headers["X-Request-ID"] == "req-123"

        assert app.state.deal_room_service is None
        assert all(task.done() for task in app.state.draft_cleanup_tasks)

    async def test_health_without_lifespan(self):
        app = create_app()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            health = await client.get("/health")
            ready = await client.get("/health/ready")

        assert health.status_code == 200
        assert health.json()["status"] == "ok"
        assert ready.status_code == 503
        assert ready.json()["status"] == "degraded"

    async def test_malformed_body_is_400(self, service):
        app = create_app()
        app.state.deal_room_service = service
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.post("/v1/projects/proj-app/deal-room/draft", json={"draft_data": {}})

        assert resp.status_code == 400
        detail = resp.json()["detail"]
        assert detail["code"] == "validation_error"
        assert any("session_id" in error for error in detail["errors"])

    async def test_metrics_use_route_template(self, service):
        app = create_app()
        app.state.deal_room_service = service
        template = "/v1/projects/{project_id}/deal-room"
        counter = http_requests_total.labels(method="GET", endpoint=template, status_code="200")
        before = counter._value.get()

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            await client.get("/v1/projects/proj-metrics/deal-room")
            metrics = await client.get("/metrics")

        assert counter._value.get() == before + 1
        assert metrics.status_code == 200
        assert "deal_room_drafts_saved_total" in metrics.text


# ── Sentry ──────────────────────────────────────────────────────────────────


class TestSentryTagging:
    """Project id tagging in before_send."""

    def test_project_id_tag(self):
        event = {"request": {"url": "http://api/v1/projects/proj-9/deal-room/draft"}}
        assert _tag_project(event, {})["tags"] == {"project_id": "proj-9"}

    def test_event_without_project(self):
        event = {"request": {"url": "http://api/v1/health"}}
        assert "tags" not in _tag_project(event, {})

    def test_init_sentry_passes_before_send(self):
        with patch("src.app.core.monitoring.sentry_sdk.init") as mock_init:
            init_sentry(dsn="https://key@sentry.example.com/1", environment="production")

        kwargs = mock_init.call_args.kwargs
        assert kwargs["before_send"] is _tag_project
        assert kwargs["traces_sample_rate"] == 0.1
