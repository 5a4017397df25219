"""Deal room persistence models.

Four SQLAlchemy models on the shared declarative Base:
- DealRoomModel: Live deal room content, one row per project
- DraftModel: Per-session working copies, unique per (project, session)
- VersionModel: Append-only published snapshots, unique per (project, version)
- ConflictModel: Divergences recorded by a failed publish

Field sets are stored in JSON columns. Ids are uuid4 hex strings generated
in Python so the schema runs unchanged on PostgreSQL and SQLite.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.app.core.database import Base


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DealRoomModel(Base):
    """Investor-facing content of one project."""

    __tablename__ = "deal_rooms"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    showcase_photo: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    investment_blurb: Mapped[str] = mapped_column(Text, nullable=False, default="")
    investment_summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    key_info: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    external_links: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class DraftModel(Base):
    """Unpublished working copy of one editing session.

    ``version`` increments on every save. ``base_version`` and
    ``last_saved_version`` reference published version numbers and form the
    optimistic concurrency token checked at publish time.
    """

    __tablename__ = "deal_room_drafts"
    __table_args__ = (
        UniqueConstraint("project_id", "session_id", name="uq_draft_project_session"),
        Index("ix_draft_updated_at", "updated_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(String(255), nullable=False)
    session_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    draft_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    base_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_saved_version: Mapped[int | None] = mapped_column(Integer, nullable=True)
    published_draft_version: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_auto_save: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class VersionModel(Base):
    """Published snapshot. Rows are never updated or deleted.

    The unique constraint on (project_id, version) makes a concurrent append
    of the same number fail instead of creating a fork in the history.
    """

    __tablename__ = "deal_room_versions"
    __table_args__ = (
        UniqueConstraint("project_id", "version", name="uq_version_project_number"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    data: Mapped[dict] = mapped_column(JSON, nullable=False)
    change_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class ConflictModel(Base):
    """Divergence between a stale draft and the published deal room."""

    __tablename__ = "deal_room_conflicts"
    __table_args__ = (
        Index("ix_conflict_project_resolved", "project_id", "resolved_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(String(255), nullable=False)
    session_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    conflict_type: Mapped[str] = mapped_column(String(32), nullable=False)
    local_version: Mapped[int] = mapped_column(Integer, nullable=False)
    server_version: Mapped[int] = mapped_column(Integer, nullable=False)
    local_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    server_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    conflict_fields: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    resolution: Mapped[str | None] = mapped_column(String(32), nullable=True)
    resolved_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
