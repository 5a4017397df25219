"""Input validation for deal room field sets and identifiers.

Field rules live on the Pydantic schemas. This module runs them and turns
Pydantic's error list into the flat, human-readable messages carried by
ValidationError, e.g. "Key info item 2: Link must be a valid URL".
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from src.app.deal_room.errors import ValidationError
from src.app.deal_room.schemas import DealRoomContent

_ITEM_LABELS = {
    "key_info": "Key info item",
    "external_links": "External link",
}

_FIELD_LABELS = {
    "showcase_photo": "Showcase photo",
    "investment_blurb": "Investment blurb",
    "investment_summary": "Investment summary",
    "key_info": "Key info",
    "external_links": "External links",
}

# Messages for item attributes that fail before their validator runs
# (missing key, wrong type).
_ATTRIBUTE_MESSAGES = {
    "name": "Name is required",
    "link": "Link is required",
    "url": "URL is required",
    "order": "Order must be a non-negative number",
}


def require_id(value: str | None, label: str) -> str:
    """Ensure an identifier is a non-blank string.

    Raises:
        ValidationError: If value is None or blank.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} is required")
    return value


def validate_field_set(data: Mapping[str, Any] | None) -> dict[str, Any]:
    """Validate the fields present in a partial field set.

    Only present fields are checked; unknown keys are dropped.

    Args:
        data: Partial field set (snake_case keys).

    Returns:
        The normalized field set in JSON mode, containing only present fields.

    Raises:
        ValidationError: With one message per failed rule.
    """
    if data is None:
        return {}
    try:
        content = DealRoomContent.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError([_describe(err) for err in exc.errors()]) from exc
    return content.to_field_set()


def _describe(error: Mapping[str, Any]) -> str:
    loc = error.get("loc", ())
    if not loc:
        return "Deal room data must be an object"

    field = str(loc[0])
    label = _FIELD_LABELS.get(field, field)
    error_type = error.get("type", "")

    if field in _ITEM_LABELS and len(loc) >= 3 and isinstance(loc[1], int):
        return f"{_ITEM_LABELS[field]} {loc[1] + 1}: {_reason(error, str(loc[2]))}"

    if error_type == "string_too_long":
        limit = error.get("ctx", {}).get("max_length")
        return f"{label} must be less than {limit:,} characters"

    if error_type == "string_type":
        return f"{label} must be a string"

    if field in _ITEM_LABELS:
        if error_type == "list_type":
            return f"{label} must be a list"
        return f"{label}: {error.get('msg', 'invalid value')}"

    if field == "showcase_photo":
        if error_type == "value_error":
            return f"{label}: {_reason(error, '')}"
        attribute = ".".join(str(part) for part in loc[1:])
        if attribute:
            return f"{label} {attribute}: {error.get('msg', 'invalid value')}"

    return f"{label}: {error.get('msg', 'invalid value')}"


def _reason(error: Mapping[str, Any], attribute: str) -> str:
    if error.get("type") == "value_error":
        cause = error.get("ctx", {}).get("error")
        if cause is not None:
            return str(cause)
    if attribute in _ATTRIBUTE_MESSAGES:
        return _ATTRIBUTE_MESSAGES[attribute]
    return str(error.get("msg", "invalid value"))
