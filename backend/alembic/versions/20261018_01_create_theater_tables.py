"""create theater tables

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_01"
down_revision = None
branch_labels = None
depends_on = None


ROOM_STATUS = sa.Enum("waiting", "playing", "paused", "ended", name="room_status")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("picture", sa.String(length=1024), nullable=True),
        sa.Column("is_online", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        mysql_charset="utf8mb4",
    )
    op.create_index("ix_users_is_online", "users", ["is_online"])

    op.create_table(
        "rooms",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("host_id", sa.Integer(), nullable=False),
        sa.Column("movie_name", sa.String(length=255), nullable=False),
        sa.Column("movie_year", sa.Integer(), nullable=True),
        sa.Column("movie_poster", sa.String(length=1024), nullable=True),
        sa.Column("movie_duration", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("movie_genre", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("video_name", sa.String(length=255), nullable=True),
        sa.Column("video_size", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("video_type", sa.String(length=128), nullable=True),
        sa.Column("video_url", sa.String(length=2048), nullable=True),
        sa.Column("is_private", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        sa.Column("max_participants", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("current_participants", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("peak_participants", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", ROOM_STATUS, nullable=False, server_default="waiting"),
        sa.Column("is_playing", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("playback_position", sa.Float(), nullable=False, server_default="0"),
        sa.Column("duration", sa.Float(), nullable=False, server_default="0"),
        sa.Column("playback_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("allow_chat", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("allow_video_upload", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("autoplay", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sync_tolerance", sa.Float(), nullable=False, server_default="5"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["host_id"], ["users.id"], ondelete="CASCADE"),
        mysql_charset="utf8mb4",
    )
    op.create_index("ix_rooms_host_id", "rooms", ["host_id"])
    op.create_index("ix_rooms_status", "rooms", ["status"])
    op.create_index("ix_rooms_is_private", "rooms", ["is_private"])

    op.create_table(
        "room_participants",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("room_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_host", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["room_id"], ["rooms.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("room_id", "user_id", name="uq_room_participant"),
        mysql_charset="utf8mb4",
    )
    op.create_index(
        "ix_room_participants_active", "room_participants", ["room_id", "is_active"]
    )


def downgrade() -> None:
    op.drop_index("ix_room_participants_active", table_name="room_participants")
    op.drop_table("room_participants")
    op.drop_index("ix_rooms_is_private", table_name="rooms")
    op.drop_index("ix_rooms_status", table_name="rooms")
    op.drop_index("ix_rooms_host_id", table_name="rooms")
    op.drop_table("rooms")
    op.drop_index("ix_users_is_online", table_name="users")
    op.drop_table("users")

    ROOM_STATUS.drop(op.get_bind(), checkfirst=False)
