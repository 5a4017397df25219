"""Tests for the draft retention background task."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from src.app.deal_room.scheduler import setup_draft_cleanup, start_cleanup_background


class TestSetupDraftCleanup:
    """Task definitions."""

    async def test_task_returns_removed_count(self):
        service = MagicMock()
        service.cleanup_expired_drafts = AsyncMock(return_value=3)

        tasks = setup_draft_cleanup(service)

        assert list(tasks) == ["cleanup_expired_drafts"]
        assert await tasks["cleanup_expired_drafts"]() == 3
        service.cleanup_expired_drafts.assert_awaited_once()

    async def test_task_swallows_failures(self):
        service = MagicMock()
        service.cleanup_expired_drafts = AsyncMock(side_effect=RuntimeError("db down"))

        tasks = setup_draft_cleanup(service)

        assert await tasks["cleanup_expired_drafts"]() == 0

    async def test_task_runs_against_real_service(self, service, clock):
        await service.save_draft("proj-sweep", "s1", {"investment_blurb": "stale"})
        clock.advance(hours=30)

        tasks = setup_draft_cleanup(service)

        assert await tasks["cleanup_expired_drafts"]() == 1
        assert await service.get_draft("proj-sweep", "s1") is None


class TestStartCleanupBackground:
    """Background loop scheduling."""

    async def test_loop_runs_task_repeatedly(self):
        calls = 0

        async def task() -> int:
            nonlocal calls
            calls += 1
            return 0

        state = SimpleNamespace()
        started = await start_cleanup_background({"cleanup_expired_drafts": task}, state, interval=0.01)
        await asyncio.sleep(0.1)

        for bg in started:
            bg.cancel()
        await asyncio.gather(*started, return_exceptions=True)

        assert state.draft_cleanup_tasks == started
        assert calls >= 2

    async def test_loop_survives_task_errors(self):
        task = AsyncMock(side_effect=[RuntimeError("boom"), 0, 0, 0, 0, 0, 0, 0, 0, 0])

        state = SimpleNamespace()
        started = await start_cleanup_background({"cleanup_expired_drafts": task}, state, interval=0.01)
        await asyncio.sleep(0.1)

        for bg in started:
            bg.cancel()
        await asyncio.gather(*started, return_exceptions=True)

        assert task.await_count >= 2
