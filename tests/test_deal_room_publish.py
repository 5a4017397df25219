"""Tests for publishing drafts and detecting concurrent edits.

Walks through the single-editor and two-editor flows: first publish,
republish after further edits, divergence that records a conflict, and
divergence that is harmless because the fields do not differ.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.app.deal_room.errors import (
    ConflictError,
    NotFoundError,
    StorageError,
    ValidationError,
    VersionSequenceError,
)
from src.app.deal_room.schemas import ConflictType, PublishResult


PROJECT = "proj-publish"


# ── Single editor ───────────────────────────────────────────────────────────


class TestPublishSingleSession:
    """One session saving and publishing."""

    async def test_first_publish_creates_version_one(self, service):
        await service.save_draft(PROJECT, "s1", {"investment_blurb": "X"}, user_id="u1")

        result = await service.publish(PROJECT, "s1", "Initial copy")

        assert result.deal_room.investment_blurb == "X"
        assert result.version.version == 1
        assert result.version.change_description == "Initial copy"
        assert result.version.created_by == "u1"
        assert result.version.data["investment_blurb"] == "X"

        draft = await service.get_draft(PROJECT, "s1")
        assert draft.last_saved_version == 1
        assert draft.published_draft_version == 1
        assert draft.has_unsaved_changes is False

    async def test_republish_after_more_edits(self, service):
        await service.save_draft(PROJECT, "s1", {"investment_blurb": "X"})
        await service.publish(PROJECT, "s1")
        await service.save_draft(PROJECT, "s1", {"investment_summary": "Details"})

        result = await service.publish(PROJECT, "s1")

        assert result.version.version == 2
        assert result.deal_room.investment_blurb == "X"
        assert result.deal_room.investment_summary == "Details"
        draft = await service.get_draft(PROJECT, "s1")
        assert draft.last_saved_version == 2
        assert draft.published_draft_version == 2

    async def test_published_items_get_ids(self, service):
        await service.save_draft(
            PROJECT,
            "s1",
            {
                "external_links": [
                    {"name": "Site", "url": "https://example.com", "order": 0},
                    {"name": "Press", "url": "https://example.com/press", "order": 1},
                ]
            },
        )
        result = await service.publish(PROJECT, "s1")

        ids = [link.id for link in result.deal_room.external_links]
        assert all(ids)
        assert len(set(ids)) == 2

    async def test_publish_without_draft(self, service):
        with pytest.raises(NotFoundError, match="No draft found to publish"):
            await service.publish(PROJECT, "nobody")
        assert await service.get_version_history(PROJECT) == []

    async def test_blank_project_is_rejected(self, service):
        with pytest.raises(ValidationError):
            await service.publish("", "s1")


# ── Two editors ─────────────────────────────────────────────────────────────


class TestPublishConcurrentSessions:
    """Another session publishing between this session's save and publish."""

    async def test_divergent_publish_records_conflict(self, service):
        await service.save_draft(PROJECT, "s2", {"investment_blurb": "Y"}, user_id="u2")
        await service.save_draft(PROJECT, "s1", {"investment_blurb": "X"}, user_id="u1")
        await service.publish(PROJECT, "s1")

        with pytest.raises(ConflictError) as exc_info:
            await service.publish(PROJECT, "s2")

        room = await service.get_deal_room(PROJECT)
        assert room.investment_blurb == "X"

        draft = await service.get_draft(PROJECT, "s2")
        assert draft.version == 1
        assert draft.draft_data == {"investment_blurb": "Y"}
        assert draft.last_saved_version is None

        versions = await service.get_version_history(PROJECT)
        assert [v.version for v in versions] == [1]

        conflicts = await service.get_unresolved_conflicts(PROJECT)
        assert len(conflicts) == 1
        conflict = conflicts[0]
        assert conflict.id == exc_info.value.conflict_id
        assert conflict.session_id == "s2"
        assert conflict.user_id == "u2"
        assert conflict.conflict_type == ConflictType.CONCURRENT_EDIT
        assert conflict.conflict_fields == ["investment_blurb"]
        assert conflict.local_version == 1
        assert conflict.server_version == 1
        assert conflict.local_data["investment_blurb"] == "Y"
        assert conflict.server_data["investment_blurb"] == "X"
        assert conflict.is_resolved is False

    async def test_same_value_is_not_a_conflict(self, service):
        await service.save_draft(PROJECT, "s2", {"investment_blurb": "X"})
        await service.save_draft(PROJECT, "s1", {"investment_blurb": "X"})
        await service.publish(PROJECT, "s1")

        result = await service.publish(PROJECT, "s2")

        assert result.version.version == 2
        assert await service.get_unresolved_conflicts(PROJECT) == []

    async def test_same_photo_is_not_a_conflict(self, service, clock):
        photo = {
            "filename": "tower.webp",
            "original_name": "Tower.webp",
            "mime_type": "image/webp",
            "size": 2048,
        }
        await service.save_draft(PROJECT, "s2", {"showcase_photo": photo})
        clock.advance(minutes=5)
        await service.save_draft(
            PROJECT, "s1", {"showcase_photo": dict(photo), "investment_blurb": "X"}
        )
        await service.publish(PROJECT, "s1")

        result = await service.publish(PROJECT, "s2")

        assert result.version.version == 2
        assert result.deal_room.showcase_photo.filename == "tower.webp"
        assert result.deal_room.showcase_photo.uploaded_at is None
        assert await service.get_unresolved_conflicts(PROJECT) == []

    async def test_disjoint_fields_are_not_a_conflict(self, service):
        await service.save_draft(PROJECT, "s2", {"investment_summary": "Numbers"})
        await service.save_draft(PROJECT, "s1", {"investment_blurb": "X"})
        await service.publish(PROJECT, "s1")

        result = await service.publish(PROJECT, "s2")

        assert result.deal_room.investment_blurb == "X"
        assert result.deal_room.investment_summary == "Numbers"

    async def test_conflict_lists_every_differing_field(self, service):
        await service.save_draft(
            PROJECT,
            "s2",
            {
                "investment_blurb": "Y",
                "key_info": [{"name": "Mine", "link": "https://example.com/mine", "order": 0}],
            },
        )
        await service.save_draft(
            PROJECT,
            "s1",
            {
                "investment_blurb": "X",
                "key_info": [{"name": "Theirs", "link": "https://example.com/theirs", "order": 0}],
            },
        )
        await service.publish(PROJECT, "s1")

        with pytest.raises(ConflictError):
            await service.publish(PROJECT, "s2")

        conflict = (await service.get_unresolved_conflicts(PROJECT))[0]
        assert conflict.conflict_fields == ["investment_blurb", "key_info"]

    async def test_concurrent_publishes_are_serialised(self, service):
        await service.save_draft(PROJECT, "s1", {"investment_blurb": "one"})
        await service.save_draft(PROJECT, "s2", {"investment_blurb": "two"})

        results = await asyncio.gather(
            service.publish(PROJECT, "s1"),
            service.publish(PROJECT, "s2"),
            return_exceptions=True,
        )

        published = [r for r in results if isinstance(r, PublishResult)]
        conflicted = [r for r in results if isinstance(r, ConflictError)]
        assert len(published) == 1
        assert len(conflicted) == 1
        assert [v.version for v in await service.get_version_history(PROJECT)] == [1]

    async def test_projects_are_independent(self, service):
        await service.save_draft("proj-a", "s1", {"investment_blurb": "A"})
        await service.save_draft("proj-b", "s1", {"investment_blurb": "B"})

        a = await service.publish("proj-a", "s1")
        b = await service.publish("proj-b", "s1")

        assert a.version.version == 1
        assert b.version.version == 1


# ── Storage failures ────────────────────────────────────────────────────────


class TestPublishStorageFailures:
    """Store failures surface as StorageError."""

    async def test_failing_draft_store(self, service, memory_stores):
        memory_stores["drafts"].get = AsyncMock(side_effect=RuntimeError("connection lost"))

        with pytest.raises(StorageError) as exc_info:
            await service.publish(PROJECT, "s1")

        assert exc_info.value.operation == "publish"
        assert "connection lost" in str(exc_info.value)

    async def test_lost_version_race_propagates(self, service, memory_stores):
        await service.save_draft(PROJECT, "s1", {"investment_blurb": "X"})
        memory_stores["versions"].append = AsyncMock(
            side_effect=VersionSequenceError(PROJECT, expected=0, actual=1)
        )

        with pytest.raises(VersionSequenceError):
            await service.publish(PROJECT, "s1")

        draft = await service.get_draft(PROJECT, "s1")
        assert draft.last_saved_version is None
