"""Create deal room, draft, version and conflict tables.

Revision ID: 001_deal_room_tables
Revises:
Create Date: 2026-03-02

Creates four tables:
- deal_rooms: Live deal room content, one row per project
- deal_room_drafts: Per-session drafts, unique per (project_id, session_id)
- deal_room_versions: Append-only snapshots, unique per (project_id, version)
- deal_room_conflicts: Conflicts recorded by failed publishes

Field sets are JSON columns. No foreign keys: rows are keyed by project_id
and session_id strings owned by the surrounding platform.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_deal_room_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── deal_rooms table ────────────────────────────────────────────────

    op.create_table(
        "deal_rooms",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("project_id", sa.String(255), nullable=False),
        sa.Column("showcase_photo", sa.JSON(), nullable=True),
        sa.Column("investment_blurb", sa.Text(), nullable=False),
        sa.Column("investment_summary", sa.Text(), nullable=False),
        sa.Column("key_info", sa.JSON(), nullable=False),
        sa.Column("external_links", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("project_id"),
    )

    # ── deal_room_drafts table ──────────────────────────────────────────

    op.create_table(
        "deal_room_drafts",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("project_id", sa.String(255), nullable=False),
        sa.Column("session_id", sa.String(255), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=True),
        sa.Column("draft_data", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("base_version", sa.Integer(), nullable=False),
        sa.Column("last_saved_version", sa.Integer(), nullable=True),
        sa.Column("published_draft_version", sa.Integer(), nullable=True),
        sa.Column("is_auto_save", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("project_id", "session_id", name="uq_draft_project_session"),
    )
    op.create_index("ix_draft_updated_at", "deal_room_drafts", ["updated_at"])

    # ── deal_room_versions table ────────────────────────────────────────

    op.create_table(
        "deal_room_versions",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("project_id", sa.String(255), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("change_description", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("project_id", "version", name="uq_version_project_number"),
    )

    # ── deal_room_conflicts table ───────────────────────────────────────

    op.create_table(
        "deal_room_conflicts",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("project_id", sa.String(255), nullable=False),
        sa.Column("session_id", sa.String(255), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=True),
        sa.Column("conflict_type", sa.String(32), nullable=False),
        sa.Column("local_version", sa.Integer(), nullable=False),
        sa.Column("server_version", sa.Integer(), nullable=False),
        sa.Column("local_data", sa.JSON(), nullable=False),
        sa.Column("server_data", sa.JSON(), nullable=False),
        sa.Column("conflict_fields", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution", sa.String(32), nullable=True),
        sa.Column("resolved_data", sa.JSON(), nullable=True),
    )
    op.create_index(
        "ix_conflict_project_resolved",
        "deal_room_conflicts",
        ["project_id", "resolved_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_conflict_project_resolved", table_name="deal_room_conflicts")
    op.drop_table("deal_room_conflicts")
    op.drop_table("deal_room_versions")
    op.drop_index("ix_draft_updated_at", table_name="deal_room_drafts")
    op.drop_table("deal_room_drafts")
    op.drop_table("deal_rooms")
