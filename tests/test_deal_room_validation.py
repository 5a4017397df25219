"""Unit tests for deal room field validation.

Covers the length, URL, order and photo rules, the flattening of Pydantic
errors into readable messages, and identifier checks.
"""

from __future__ import annotations

import pytest

from src.app.deal_room.errors import ValidationError
from src.app.deal_room.validation import require_id, validate_field_set


def _errors(data: dict) -> list[str]:
    with pytest.raises(ValidationError) as exc_info:
        validate_field_set(data)
    return exc_info.value.errors


class TestScalarFields:
    """Investment blurb and summary length limits."""

    def test_blurb_at_limit_is_accepted(self):
        assert validate_field_set({"investment_blurb": "a" * 500}) == {
            "investment_blurb": "a" * 500
        }

    def test_blurb_over_limit_is_rejected(self):
        assert _errors({"investment_blurb": "a" * 501}) == [
            "Investment blurb must be less than 500 characters"
        ]

    def test_summary_over_limit_is_rejected(self):
        assert _errors({"investment_summary": "s" * 10_001}) == [
            "Investment summary must be less than 10,000 characters"
        ]

    def test_non_string_blurb_is_rejected(self):
        assert _errors({"investment_blurb": 42}) == ["Investment blurb must be a string"]


class TestKeyInfo:
    """Key info items: name, link, order."""

    def test_valid_items_are_returned_without_empty_ids(self):
        result = validate_field_set(
            {"key_info": [{"name": "Deck", "link": "https://example.com/deck.pdf", "order": 0}]}
        )
        assert result == {
            "key_info": [{"name": "Deck", "link": "https://example.com/deck.pdf", "order": 0}]
        }

    def test_blank_name(self):
        errors = _errors({"key_info": [{"name": "  ", "link": "https://example.com", "order": 0}]})
        assert errors == ["Key info item 1: Name is required"]

    def test_invalid_link_reports_item_position(self):
        errors = _errors(
            {
                "key_info": [
                    {"name": "Deck", "link": "https://example.com", "order": 0},
                    {"name": "Model", "link": "not a url", "order": 1},
                ]
            }
        )
        assert errors == ["Key info item 2: Link must be a valid URL"]

    def test_missing_link(self):
        errors = _errors({"key_info": [{"name": "Deck", "order": 0}]})
        assert errors == ["Key info item 1: Link is required"]

    def test_negative_order(self):
        errors = _errors({"key_info": [{"name": "Deck", "link": "https://example.com", "order": -1}]})
        assert errors == ["Key info item 1: Order must be a non-negative number"]

    def test_non_list_value(self):
        assert _errors({"key_info": "Deck"}) == ["Key info must be a list"]


class TestExternalLinks:
    """External links use URL wording."""

    def test_missing_url(self):
        errors = _errors({"external_links": [{"name": "Site", "order": 0}]})
        assert errors == ["External link 1: URL is required"]

    def test_invalid_url(self):
        errors = _errors({"external_links": [{"name": "Site", "url": "example", "order": 0}]})
        assert errors == ["External link 1: URL must be a valid URL"]


class TestShowcasePhoto:
    """Photo metadata rules."""

    def _photo(self, **overrides) -> dict:
        photo = {
            "filename": "tower.webp",
            "original_name": "Tower.webp",
            "mime_type": "image/webp",
            "size": 2048,
        }
        photo.update(overrides)
        return photo

    def test_valid_photo(self):
        result = validate_field_set({"showcase_photo": self._photo()})
        assert result["showcase_photo"]["filename"] == "tower.webp"
        assert "uploaded_at" not in result["showcase_photo"]

    def test_unsupported_type(self):
        errors = _errors({"showcase_photo": self._photo(mime_type="image/gif")})
        assert errors == ["Showcase photo: Photo must be a JPEG, PNG or WebP image"]

    def test_zero_size(self):
        errors = _errors({"showcase_photo": self._photo(size=0)})
        assert errors == ["Showcase photo: Photo size must be greater than zero"]


class TestFieldSets:
    """Only present fields are validated; several failures are collected."""

    def test_absent_fields_are_not_checked(self):
        assert validate_field_set({}) == {}
        assert validate_field_set(None) == {}

    def test_unknown_keys_are_dropped(self):
        assert validate_field_set({"headline": "x", "investment_blurb": "b"}) == {
            "investment_blurb": "b"
        }

    def test_multiple_failures_are_collected(self):
        errors = _errors(
            {
                "investment_blurb": "a" * 501,
                "external_links": [{"name": "", "url": "https://example.com", "order": 0}],
            }
        )
        assert "Investment blurb must be less than 500 characters" in errors
        assert "External link 1: Name is required" in errors
        assert len(errors) == 2

    def test_error_message_joins_all_errors(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_field_set({"investment_blurb": "a" * 501, "investment_summary": "s" * 10_001})
        assert str(exc_info.value) == "; ".join(exc_info.value.errors)


class TestRequireId:
    """Identifier checks."""

    def test_valid_id_is_returned(self):
        assert require_id("project-1", "Project ID") == "project-1"

    @pytest.mark.parametrize("value", ["", "   ", None])
    def test_blank_id_is_rejected(self, value):
        with pytest.raises(ValidationError) as exc_info:
            require_id(value, "Session ID")
        assert exc_info.value.errors == ["Session ID is required"]
