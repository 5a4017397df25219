"""Tests for save status, completion status, direct updates and the overview."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.app.deal_room.errors import ConflictError, ValidationError
from src.app.deal_room.schemas import SaveState


PROJECT = "proj-status"


# ── Save status ─────────────────────────────────────────────────────────────


class TestSaveStatus:
    """Projection of a session's draft and conflicts."""

    async def test_no_draft_is_saved(self, service):
        status = await service.get_save_status(PROJECT, "s1")

        assert status.status == SaveState.SAVED
        assert status.has_unsaved_changes is False
        assert status.version == 0
        assert status.last_saved is None

    async def test_draft_ahead_of_publish_is_unsaved(self, service, clock):
        await service.save_draft(PROJECT, "s1", {"investment_blurb": "draft"})

        status = await service.get_save_status(PROJECT, "s1")

        assert status.status == SaveState.UNSAVED
        assert status.has_unsaved_changes is True
        assert status.version == 1
        assert status.last_saved is None
        assert status.last_auto_save == clock.now

    async def test_manual_save_has_no_auto_save_time(self, service):
        await service.save_draft(PROJECT, "s1", {"investment_blurb": "draft"}, is_auto_save=False)
        status = await service.get_save_status(PROJECT, "s1")
        assert status.last_auto_save is None

    async def test_published_draft_is_saved(self, service, clock):
        await service.save_draft(PROJECT, "s1", {"investment_blurb": "draft"})
        clock.advance(minutes=1)
        await service.publish(PROJECT, "s1")

        status = await service.get_save_status(PROJECT, "s1")

        assert status.status == SaveState.SAVED
        assert status.has_unsaved_changes is False
        assert status.last_saved == clock.now

    async def test_edit_after_publish_is_unsaved_again(self, service):
        await service.save_draft(PROJECT, "s1", {"investment_blurb": "draft"})
        await service.publish(PROJECT, "s1")
        await service.save_draft(PROJECT, "s1", {"investment_blurb": "more"})

        status = await service.get_save_status(PROJECT, "s1")

        assert status.status == SaveState.UNSAVED
        assert status.version == 2

    async def test_conflict_is_reported(self, service):
        await service.save_draft(PROJECT, "s2", {"investment_blurb": "Y"})
        await service.save_draft(PROJECT, "s1", {"investment_blurb": "X"})
        await service.publish(PROJECT, "s1")
        with pytest.raises(ConflictError) as exc_info:
            await service.publish(PROJECT, "s2")

        status = await service.get_save_status(PROJECT, "s2")
        assert status.status == SaveState.CONFLICT
        assert status.conflict_id == exc_info.value.conflict_id
        assert status.version == 1

        other = await service.get_save_status(PROJECT, "s1")
        assert other.status == SaveState.SAVED

    async def test_storage_failure_reports_error(self, service, memory_stores):
        memory_stores["drafts"].get = AsyncMock(side_effect=RuntimeError("database unavailable"))

        status = await service.get_save_status(PROJECT, "s1")

        assert status.status == SaveState.ERROR
        assert status.error == "database unavailable"
        assert status.has_unsaved_changes is True


# ── Completion ──────────────────────────────────────────────────────────────


class TestCompletionStatus:
    """Section completion of the live deal room."""

    async def test_empty_deal_room(self, service):
        completion = await service.get_completion_status(PROJECT)

        assert completion.completion_percentage == 0
        assert completion.completed_sections == []
        assert completion.total_sections == 5

    async def test_partial_deal_room(self, service):
        await service.update_deal_room(
            PROJECT,
            {
                "investment_blurb": "A great deal",
                "key_info": [{"name": "Deck", "link": "https://example.com/deck", "order": 0}],
            },
        )

        completion = await service.get_completion_status(PROJECT)

        assert completion.completion_percentage == 40
        assert completion.completed_sections == ["investment_blurb", "key_info"]
        assert completion.section_status.key_info is True
        assert completion.section_status.showcase_photo is False

    async def test_whitespace_blurb_is_incomplete(self, service):
        await service.update_deal_room(PROJECT, {"investment_blurb": "   "})
        completion = await service.get_completion_status(PROJECT)
        assert completion.section_status.investment_blurb is False


# ── Direct updates ──────────────────────────────────────────────────────────


class TestUpdateDealRoom:
    """Non-draft edits of the live deal room."""

    async def test_update_writes_without_version(self, service):
        room = await service.update_deal_room(PROJECT, {"investment_summary": "Summary"})

        assert room.investment_summary == "Summary"
        assert await service.get_version_history(PROJECT) == []

    async def test_update_assigns_item_ids(self, service):
        room = await service.update_deal_room(
            PROJECT,
            {
                "external_links": [
                    {"id": "dup", "name": "A", "url": "https://a.example.com", "order": 0},
                    {"id": "dup", "name": "B", "url": "https://b.example.com", "order": 1},
                ]
            },
        )

        ids = [link.id for link in room.external_links]
        assert ids[0] == "dup"
        assert ids[1] and ids[1] != "dup"

    async def test_invalid_update(self, service):
        with pytest.raises(ValidationError):
            await service.update_deal_room(PROJECT, {"investment_blurb": "x" * 501})
        room = await service.get_deal_room(PROJECT)
        assert room.investment_blurb == ""

    async def test_get_deal_room_creates_once(self, service):
        first = await service.get_deal_room(PROJECT)
        second = await service.get_deal_room(PROJECT)
        assert first.id == second.id


# ── Overview ────────────────────────────────────────────────────────────────


class TestOverview:
    """Dashboard aggregation."""

    async def test_overview_collects_all_pieces(self, service):
        await service.save_draft(PROJECT, "s1", {"investment_blurb": "X"})
        await service.publish(PROJECT, "s1")

        overview = await service.get_overview(PROJECT, "s1")

        assert overview.deal_room.investment_blurb == "X"
        assert overview.completion.completion_percentage == 20
        assert overview.save_status.status == SaveState.SAVED
        assert [v.version for v in overview.recent_versions] == [1]
        assert overview.unresolved_conflicts == []

    async def test_failing_piece_falls_back(self, service, memory_stores):
        memory_stores["versions"].list_recent = AsyncMock(side_effect=RuntimeError("boom"))

        overview = await service.get_overview(PROJECT, "s1")

        assert overview.recent_versions == []
        assert overview.deal_room is not None
        assert overview.completion is not None
