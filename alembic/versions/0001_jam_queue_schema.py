"""jam_queue_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Creates the jam queue tables: event_guests, event_jams, jam_songs,
jam_song_instrument_slots, jam_song_candidates, jam_song_ratings.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

INSTRUMENTS = ("guitar", "bass", "drums", "keys", "vocals", "horns", "percussion", "strings", "other")


def upgrade() -> None:
    # --- event_guests ---
    op.create_table(
        "event_guests",
        sa.Column("guest_id", sa.String(36), primary_key=True),
        sa.Column("event_id", sa.String(64), nullable=False, index=True),
        sa.Column("user_id", sa.String(36), nullable=True),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.Column("check_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("event_id", "user_id", name="uq_event_guests_event_user"),
    )

    # --- event_jams ---
    op.create_table(
        "event_jams",
        sa.Column("jam_id", sa.String(36), primary_key=True),
        sa.Column("event_id", sa.String(64), nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False, unique=True),
        sa.Column("status", sa.Enum("active", "inactive", name="jamstatus"), nullable=False, server_default="active"),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("order_index", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("event_id", "name", name="uq_event_jams_event_name"),
    )

    # --- jam_songs ---
    op.create_table(
        "jam_songs",
        sa.Column("song_id", sa.String(36), primary_key=True),
        sa.Column(
            "jam_id", sa.String(36), sa.ForeignKey("event_jams.jam_id", ondelete="CASCADE"),
            nullable=False, index=True,
        ),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("artist", sa.String(255), nullable=True),
        sa.Column("key", sa.String(10), nullable=True),
        sa.Column("tempo_bpm", sa.Integer, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("release_batch", sa.Integer, nullable=True),
        sa.Column(
            "status",
            sa.Enum("planned", "open_for_candidates", "on_stage", "played", "canceled", name="songstatus"),
            nullable=False,
            server_default="planned",
        ),
        sa.Column("ready", sa.Boolean, nullable=False, server_default="0"),
        sa.Column("order_index", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_jam_songs_bucket", "jam_songs", ["jam_id", "status", "order_index"])

    # --- jam_song_instrument_slots ---
    op.create_table(
        "jam_song_instrument_slots",
        sa.Column("slot_id", sa.String(36), primary_key=True),
        sa.Column(
            "song_id", sa.String(36), sa.ForeignKey("jam_songs.song_id", ondelete="CASCADE"),
            nullable=False, index=True,
        ),
        sa.Column("instrument", sa.Enum(*INSTRUMENTS, name="instrument"), nullable=False),
        sa.Column("slots", sa.Integer, nullable=False, server_default="1"),
        sa.Column("required", sa.Boolean, nullable=False, server_default="1"),
        sa.Column("fallback_allowed", sa.Boolean, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("song_id", "instrument", name="uq_instrument_slots_song_instrument"),
    )

    # --- jam_song_candidates ---
    op.create_table(
        "jam_song_candidates",
        sa.Column("candidate_id", sa.String(36), primary_key=True),
        sa.Column(
            "song_id", sa.String(36), sa.ForeignKey("jam_songs.song_id", ondelete="CASCADE"),
            nullable=False, index=True,
        ),
        sa.Column("instrument", postgresql.ENUM(*INSTRUMENTS, name="instrument", create_type=False), nullable=False),
        sa.Column("guest_id", sa.String(36), sa.ForeignKey("event_guests.guest_id"), nullable=False, index=True),
        sa.Column(
            "status",
            sa.Enum("pending", "approved", "rejected", name="candidatestatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("applied_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.String(36), nullable=True),
        sa.UniqueConstraint("song_id", "instrument", "guest_id", name="uq_candidates_song_instrument_guest"),
    )

    # --- jam_song_ratings ---
    op.create_table(
        "jam_song_ratings",
        sa.Column("rating_id", sa.String(36), primary_key=True),
        sa.Column(
            "song_id", sa.String(36), sa.ForeignKey("jam_songs.song_id", ondelete="CASCADE"),
            nullable=False, index=True,
        ),
        sa.Column("guest_id", sa.String(36), sa.ForeignKey("event_guests.guest_id"), nullable=True),
        sa.Column("user_id", sa.String(36), nullable=True),
        sa.Column("stars", sa.Integer, nullable=False),
        sa.Column("rated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("song_id", "guest_id", name="uq_ratings_song_guest"),
        sa.UniqueConstraint("song_id", "user_id", name="uq_ratings_song_user"),
        sa.CheckConstraint("stars BETWEEN 1 AND 5", name="ck_ratings_stars_range"),
    )


def downgrade() -> None:
    op.drop_table("jam_song_ratings")
    op.drop_table("jam_song_candidates")
    op.drop_table("jam_song_instrument_slots")
    op.drop_index("ix_jam_songs_bucket", table_name="jam_songs")
    op.drop_table("jam_songs")
    op.drop_table("event_jams")
    op.drop_table("event_guests")
    sa.Enum(name="candidatestatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="instrument").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="songstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="jamstatus").drop(op.get_bind(), checkfirst=True)
