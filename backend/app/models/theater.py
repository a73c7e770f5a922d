from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base
from app.models.enums import RoomStatus


class User(Base):
    """Durable viewer identity."""

    __tablename__ = "users"
    __table_args__ = (Index("ix_users_is_online", "is_online"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    picture: Mapped[str | None] = mapped_column(String(1024))
    is_online: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_seen: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    hosted_rooms: Mapped[list["Room"]] = relationship(back_populates="host")
    participations: Mapped[list["RoomParticipant"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class Room(Base):
    """Shared viewing session with a host, a roster and a playback clock."""

    __tablename__ = "rooms"
    __table_args__ = (
        Index("ix_rooms_host_id", "host_id"),
        Index("ix_rooms_status", "status"),
        Index("ix_rooms_is_private", "is_private"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    host_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    movie_name: Mapped[str] = mapped_column(String(255), nullable=False)
    movie_year: Mapped[int | None] = mapped_column(Integer)
    movie_poster: Mapped[str | None] = mapped_column(String(1024))
    movie_duration: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    movie_genre: Mapped[str] = mapped_column(String(64), default="", nullable=False)

    video_name: Mapped[str | None] = mapped_column(String(255))
    video_size: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    video_type: Mapped[str | None] = mapped_column(String(128))
    video_url: Mapped[str | None] = mapped_column(String(2048))

    is_private: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    password_hash: Mapped[str | None] = mapped_column(String(255))
    max_participants: Mapped[int] = mapped_column(Integer, default=50, nullable=False)
    current_participants: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    peak_participants: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    status: Mapped[RoomStatus] = mapped_column(
        SAEnum(
            RoomStatus,
            name="room_status",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        default=RoomStatus.WAITING,
        nullable=False,
    )
    is_playing: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    current_time: Mapped[float] = mapped_column(
        "playback_position", Float, default=0.0, nullable=False
    )
    duration: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    playback_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    allow_chat: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    allow_video_upload: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    autoplay: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sync_tolerance: Mapped[float] = mapped_column(Float, default=5.0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    host: Mapped[User] = relationship(back_populates="hosted_rooms")
    participants: Mapped[list["RoomParticipant"]] = relationship(
        back_populates="room",
        cascade="all, delete-orphan",
        order_by="RoomParticipant.joined_at",
    )


class RoomParticipant(Base):
    """Per-room membership record; one row per (room, user)."""

    __tablename__ = "room_participants"
    __table_args__ = (
        UniqueConstraint("room_id", "user_id", name="uq_room_participant"),
        Index("ix_room_participants_active", "room_id", "is_active"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    room_id: Mapped[int] = mapped_column(
        ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_host: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    room: Mapped[Room] = relationship(back_populates="participants")
    user: Mapped[User] = relationship(back_populates="participations")
