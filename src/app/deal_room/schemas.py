"""Pydantic schemas for the deal room engine.

Defines:
- Content: ShowcasePhoto, KeyInfoItem, ExternalLink, DealRoomContent
- Entities: DealRoom, Draft, Version, Conflict
- Enums: ConflictType, ResolutionStrategy, SaveState
- Results: PublishResult, ResolveResult, SaveStatus, CompletionStatus, Overview

Field sets (draft data, version snapshots, conflict snapshots) are plain
JSON-mode dicts keyed by the names in CONTENT_FIELDS. A field that is absent
from the dict was not touched.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import AnyUrl, BaseModel, Field, TypeAdapter, computed_field, field_validator

CONTENT_FIELDS: tuple[str, ...] = (
    "showcase_photo",
    "investment_blurb",
    "investment_summary",
    "key_info",
    "external_links",
)

BLURB_MAX_LENGTH = 500
SUMMARY_MAX_LENGTH = 10_000
ALLOWED_PHOTO_TYPES = frozenset({"image/jpeg", "image/jpg", "image/png", "image/webp"})

_url_adapter = TypeAdapter(AnyUrl)


def is_valid_url(value: str) -> bool:
    """Return True if value parses as an absolute URL."""
    try:
        _url_adapter.validate_python(value)
    except ValueError:
        return False
    return True


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enums ───────────────────────────────────────────────────────────────────


class ConflictType(str, Enum):
    """Kind of divergence recorded on a Conflict."""

    CONCURRENT_EDIT = "concurrent_edit"
    VERSION_MISMATCH = "version_mismatch"
    DATA_CORRUPTION = "data_corruption"


class ResolutionStrategy(str, Enum):
    """How a conflict is resolved into a single field set."""

    USE_LOCAL = "use_local"
    USE_SERVER = "use_server"
    MERGE = "merge"
    MANUAL = "manual"


class SaveState(str, Enum):
    """Save status shown to an editing session."""

    SAVING = "saving"
    SAVED = "saved"
    UNSAVED = "unsaved"
    CONFLICT = "conflict"
    ERROR = "error"


# ── Content ─────────────────────────────────────────────────────────────────


class ShowcasePhoto(BaseModel):
    """Metadata of the uploaded showcase photo (the file itself lives elsewhere)."""

    filename: str
    original_name: str
    mime_type: str
    size: int
    uploaded_at: datetime | None = None

    @field_validator("mime_type")
    @classmethod
    def _allowed_type(cls, value: str) -> str:
        if value.lower() not in ALLOWED_PHOTO_TYPES:
            raise ValueError("Photo must be a JPEG, PNG or WebP image")
        return value

    @field_validator("size")
    @classmethod
    def _positive_size(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("Photo size must be greater than zero")
        return value


class KeyInfoItem(BaseModel):
    """Named link shown in the key information section."""

    id: str | None = None
    name: str
    link: str
    order: int

    @field_validator("name")
    @classmethod
    def _name_present(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Name is required")
        return value

    @field_validator("link")
    @classmethod
    def _link_valid(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Link is required")
        if not is_valid_url(value):
            raise ValueError("Link must be a valid URL")
        return value

    @field_validator("order")
    @classmethod
    def _order_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("Order must be a non-negative number")
        return value


class ExternalLink(BaseModel):
    """Named external resource (data room, website, ...)."""

    id: str | None = None
    name: str
    url: str
    order: int

    @field_validator("name")
    @classmethod
    def _name_present(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Name is required")
        return value

    @field_validator("url")
    @classmethod
    def _url_valid(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("URL is required")
        if not is_valid_url(value):
            raise ValueError("URL must be a valid URL")
        return value

    @field_validator("order")
    @classmethod
    def _order_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("Order must be a non-negative number")
        return value


class DealRoomContent(BaseModel):
    """A partial field set. None means the field is not present."""

    showcase_photo: ShowcasePhoto | None = None
    investment_blurb: str | None = Field(default=None, max_length=BLURB_MAX_LENGTH)
    investment_summary: str | None = Field(default=None, max_length=SUMMARY_MAX_LENGTH)
    key_info: list[KeyInfoItem] | None = None
    external_links: list[ExternalLink] | None = None

    def to_field_set(self) -> dict[str, Any]:
        """Dump only the present fields in JSON mode."""
        return self.model_dump(mode="json", exclude_none=True)


# ── Entities ────────────────────────────────────────────────────────────────


class DealRoom(BaseModel):
    """Live, investor-facing content of one project. One per project."""

    id: str
    project_id: str
    showcase_photo: ShowcasePhoto | None = None
    investment_blurb: str = ""
    investment_summary: str = ""
    key_info: list[KeyInfoItem] = Field(default_factory=list)
    external_links: list[ExternalLink] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def content(self) -> dict[str, Any]:
        """Full field set of the live deal room (photo omitted when unset)."""
        return self.model_dump(mode="json", include=set(CONTENT_FIELDS), exclude_none=True)


class Draft(BaseModel):
    """Per-session working copy holding a partial field set."""

    id: str
    project_id: str
    session_id: str
    user_id: str | None = None
    draft_data: dict[str, Any] = Field(default_factory=dict)
    version: int = 1
    base_version: int = 0
    last_saved_version: int | None = None
    published_draft_version: int | None = None
    is_auto_save: bool = True
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def expected_version(self) -> int:
        """Published version this draft was last reconciled against."""
        if self.last_saved_version is not None:
            return self.last_saved_version
        return self.base_version

    @property
    def reconciled_version(self) -> int | None:
        if self.published_draft_version is not None:
            return self.published_draft_version
        return self.last_saved_version

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_unsaved_changes(self) -> bool:
        if self.last_saved_version is None:
            return True
        return self.version > (self.reconciled_version or 0)


class Version(BaseModel):
    """Immutable snapshot of the published deal room."""

    id: str
    project_id: str
    version: int
    data: dict[str, Any]
    change_description: str | None = None
    created_by: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class Conflict(BaseModel):
    """Divergence detected while publishing a stale draft."""

    id: str
    project_id: str
    session_id: str
    user_id: str | None = None
    conflict_type: ConflictType = ConflictType.CONCURRENT_EDIT
    local_version: int
    server_version: int
    local_data: dict[str, Any]
    server_data: dict[str, Any]
    conflict_fields: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    resolved_at: datetime | None = None
    resolution: ResolutionStrategy | None = None
    resolved_data: dict[str, Any] | None = None

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None


# ── Results ─────────────────────────────────────────────────────────────────


class PublishResult(BaseModel):
    """Outcome of a successful publish."""

    deal_room: DealRoom
    version: Version


class ResolveResult(BaseModel):
    """Outcome of a conflict resolution."""

    deal_room: DealRoom
    conflict: Conflict
    version: Version


class SaveStatus(BaseModel):
    """Save status projection for one editing session."""

    status: SaveState
    has_unsaved_changes: bool
    version: int = 0
    last_saved: datetime | None = None
    last_auto_save: datetime | None = None
    conflict_id: str | None = None
    error: str | None = None


class SectionStatus(BaseModel):
    """Completion flag per deal room section."""

    showcase_photo: bool = False
    investment_blurb: bool = False
    investment_summary: bool = False
    key_info: bool = False
    external_links: bool = False


class CompletionStatus(BaseModel):
    """How much of the deal room has been filled in."""

    completion_percentage: int
    completed_sections: list[str] = Field(default_factory=list)
    total_sections: int = len(CONTENT_FIELDS)
    section_status: SectionStatus = Field(default_factory=SectionStatus)


class Overview(BaseModel):
    """Dashboard view of a project's deal room for one session."""

    deal_room: DealRoom | None = None
    completion: CompletionStatus | None = None
    save_status: SaveStatus | None = None
    recent_versions: list[Version] = Field(default_factory=list)
    unresolved_conflicts: list[Conflict] = Field(default_factory=list)
