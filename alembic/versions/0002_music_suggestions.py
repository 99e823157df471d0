"""music_suggestions

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-19

Adds guest music suggestions and their invited participants.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: Union[str, None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

INSTRUMENTS = ("guitar", "bass", "drums", "keys", "vocals", "horns", "percussion", "strings", "other")


def upgrade() -> None:
    # --- jam_music_suggestions ---
    op.create_table(
        "jam_music_suggestions",
        sa.Column("suggestion_id", sa.String(36), primary_key=True),
        sa.Column("event_id", sa.String(64), nullable=False, index=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("artist", sa.String(255), nullable=False),
        sa.Column(
            "created_by_guest_id", sa.String(36), sa.ForeignKey("event_guests.guest_id"),
            nullable=False, index=True,
        ),
        sa.Column(
            "status",
            sa.Enum("draft", "submitted", "approved", "rejected", name="suggestionstatus"),
            nullable=False,
            server_default="draft",
        ),
        sa.Column("song_id", sa.String(36), sa.ForeignKey("jam_songs.song_id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- jam_music_suggestion_participants ---
    op.create_table(
        "jam_music_suggestion_participants",
        sa.Column("participant_id", sa.String(36), primary_key=True),
        sa.Column(
            "suggestion_id", sa.String(36),
            sa.ForeignKey("jam_music_suggestions.suggestion_id", ondelete="CASCADE"),
            nullable=False, index=True,
        ),
        sa.Column("guest_id", sa.String(36), sa.ForeignKey("event_guests.guest_id"), nullable=False, index=True),
        sa.Column("instrument", postgresql.ENUM(*INSTRUMENTS, name="instrument", create_type=False), nullable=False),
        sa.Column("is_creator", sa.Boolean, nullable=False, server_default="0"),
        sa.Column(
            "status",
            sa.Enum("pending", "accepted", "rejected", name="participantstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("suggestion_id", "guest_id", name="uq_suggestion_participants_suggestion_guest"),
    )


def downgrade() -> None:
    op.drop_table("jam_music_suggestion_participants")
    op.drop_table("jam_music_suggestions")
    sa.Enum(name="participantstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="suggestionstatus").drop(op.get_bind(), checkfirst=True)
