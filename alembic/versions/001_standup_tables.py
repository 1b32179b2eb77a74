"""Create standup pipeline tables.

Revision ID: 001_standup_tables
Revises:
Create Date: 2026-10-17

Creates the standup tables plus minimal labs/users tables:
- standups: One meeting per row, soft-deleted via is_active
- transcript_archives: 1:1 with standups (unique standup_id), expires_at indexed
- action_items, blockers, decisions: Artifacts extracted from transcripts
- standup_participants: Standup <-> user links, unique per pair
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "001_standup_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _created_at_column() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    # ── labs / users ─────────────────────────────────────────────────────

    op.create_table(
        "labs",
        _id_column(),
        sa.Column("name", sa.String(200), nullable=False),
    )

    op.create_table(
        "users",
        _id_column(),
        sa.Column("name", sa.String(200), nullable=False, server_default=""),
        sa.Column("first_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("email", sa.String(300), nullable=True),
    )

    # ── standups ─────────────────────────────────────────────────────────

    op.create_table(
        "standups",
        _id_column(),
        sa.Column(
            "lab_id", UUID(as_uuid=True), sa.ForeignKey("labs.id"), nullable=False
        ),
        sa.Column(
            "date",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("audio_url", sa.String(1000), nullable=True),
        sa.Column(
            "is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False
        ),
        _created_at_column(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_standups_lab_id", "standups", ["lab_id"])

    # ── transcript_archives ──────────────────────────────────────────────

    op.create_table(
        "transcript_archives",
        _id_column(),
        sa.Column(
            "standup_id",
            UUID(as_uuid=True),
            sa.ForeignKey("standups.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("transcript", sa.Text(), nullable=False),
        sa.Column("word_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("audio_url", sa.String(1000), nullable=True),
        sa.Column("duration", sa.Float(), nullable=True),
        sa.Column(
            "language", sa.String(10), server_default=sa.text("'en'"), nullable=False
        ),
        _created_at_column(),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_transcript_archives_expires_at", "transcript_archives", ["expires_at"]
    )

    # ── artifacts ────────────────────────────────────────────────────────

    op.create_table(
        "action_items",
        _id_column(),
        sa.Column(
            "standup_id", UUID(as_uuid=True), sa.ForeignKey("standups.id"), nullable=False
        ),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column(
            "assignee_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True
        ),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "completed", sa.Boolean(), server_default=sa.text("false"), nullable=False
        ),
        _created_at_column(),
    )
    op.create_index("ix_action_items_standup_id", "action_items", ["standup_id"])

    op.create_table(
        "blockers",
        _id_column(),
        sa.Column(
            "standup_id", UUID(as_uuid=True), sa.ForeignKey("standups.id"), nullable=False
        ),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column(
            "resolved", sa.Boolean(), server_default=sa.text("false"), nullable=False
        ),
        _created_at_column(),
    )
    op.create_index("ix_blockers_standup_id", "blockers", ["standup_id"])

    op.create_table(
        "decisions",
        _id_column(),
        sa.Column(
            "standup_id", UUID(as_uuid=True), sa.ForeignKey("standups.id"), nullable=False
        ),
        sa.Column("description", sa.Text(), nullable=False),
        _created_at_column(),
    )
    op.create_index("ix_decisions_standup_id", "decisions", ["standup_id"])

    op.create_table(
        "standup_participants",
        _id_column(),
        sa.Column(
            "standup_id", UUID(as_uuid=True), sa.ForeignKey("standups.id"), nullable=False
        ),
        sa.Column(
            "user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False
        ),
        sa.UniqueConstraint("standup_id", "user_id", name="uq_standup_participant"),
    )
    op.create_index(
        "ix_standup_participants_standup_id", "standup_participants", ["standup_id"]
    )


def downgrade() -> None:
    op.drop_table("standup_participants")
    op.drop_table("decisions")
    op.drop_table("blockers")
    op.drop_table("action_items")
    op.drop_table("transcript_archives")
    op.drop_table("standups")
    op.drop_table("users")
    op.drop_table("labs")
