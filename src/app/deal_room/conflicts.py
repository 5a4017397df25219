"""Conflict detection and resolution merge rules.

Pure functions over field sets (JSON-mode dicts keyed by CONTENT_FIELDS).
Detection compares a draft against the live deal room, not against the
version the draft forked from, so two sessions that made the same edit do
not conflict while an edit that matches an older value does.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from src.app.deal_room.schemas import CONTENT_FIELDS, ResolutionStrategy

SCALAR_FIELDS = ("investment_blurb", "investment_summary")

# Array field -> attribute holding the item's target address.
ITEM_LINK_KEYS = {
    "key_info": "link",
    "external_links": "url",
}


def normalize_field(field: str, value: Any) -> Any:
    """Reduce a field value to the parts that matter for comparison.

    Array items are stripped to ``{name, link|url, order}`` so generated ids
    and extra keys never register as differences.
    """
    if field in ITEM_LINK_KEYS and isinstance(value, list):
        link_key = ITEM_LINK_KEYS[field]
        return [
            {
                "name": item.get("name"),
                link_key: item.get(link_key),
                "order": item.get("order"),
            }
            for item in value
        ]
    return value


def detect_conflicts(local: Mapping[str, Any], server: Mapping[str, Any]) -> list[str]:
    """List the fields whose values differ between two field sets.

    Fields missing (or None) on either side are not compared.

    Args:
        local: The draft's field set.
        server: The live deal room's field set.

    Returns:
        Field names in CONTENT_FIELDS order.
    """
    conflicting: list[str] = []
    for field in CONTENT_FIELDS:
        if local.get(field) is None or server.get(field) is None:
            continue
        if normalize_field(field, local[field]) != normalize_field(field, server[field]):
            conflicting.append(field)
    return conflicting


def _item_identity(field: str, item: Mapping[str, Any]) -> tuple[Any, Any]:
    return item.get("name"), item.get(ITEM_LINK_KEYS[field])


def _union_items(field: str, local: list[dict], server: list[dict]) -> list[dict]:
    seen: set[tuple[Any, Any]] = set()
    merged: list[dict] = []
    for item in [*local, *server]:
        identity = _item_identity(field, item)
        if identity in seen:
            continue
        seen.add(identity)
        merged.append(dict(item))
    return merged


def merge_field_sets(local: Mapping[str, Any], server: Mapping[str, Any]) -> dict[str, Any]:
    """Shallow field-by-field merge favouring local where it has content.

    - Scalars: local if non-empty, else server.
    - showcase_photo: local if present, else server.
    - Arrays: union de-duplicated by (name, link|url), local items first,
      each item keeping its own order value.
    """
    merged: dict[str, Any] = {}
    for field in CONTENT_FIELDS:
        local_value = local.get(field)
        server_value = server.get(field)

        if field in ITEM_LINK_KEYS:
            if local_value is None and server_value is None:
                continue
            merged[field] = _union_items(field, local_value or [], server_value or [])
        elif field in SCALAR_FIELDS:
            if local_value:
                merged[field] = local_value
            elif server_value is not None:
                merged[field] = server_value
            elif local_value is not None:
                merged[field] = local_value
        else:
            value = local_value if local_value is not None else server_value
            if value is not None:
                merged[field] = value
    return merged


def resolve_field_set(
    strategy: ResolutionStrategy,
    local: Mapping[str, Any],
    server: Mapping[str, Any],
    custom_data: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Produce the resolved field set for a conflict.

    Args:
        strategy: Effective resolution strategy.
        local: Conflict's local snapshot.
        server: Conflict's server snapshot.
        custom_data: Already validated field set, required for MANUAL.

    Returns:
        The field set to apply to the deal room.
    """
    if strategy == ResolutionStrategy.USE_LOCAL:
        return dict(local)
    if strategy == ResolutionStrategy.USE_SERVER:
        return dict(server)
    if strategy == ResolutionStrategy.MERGE:
        return merge_field_sets(local, server)
    if custom_data is None:
        raise ValueError("Manual resolution requires custom data")
    return dict(custom_data)
