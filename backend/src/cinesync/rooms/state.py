"""Immutable room snapshots and the pure rules applied to them.

The durable store hands the realtime core plain dataclasses instead of ORM
instances. Everything in this module works on those snapshots only, so the
join rules and the payload shapes sent to clients can be tested without a
database or a socket.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from app.models.enums import RoomStatus

from ..realtime.errors import (
    InvalidCredential,
    NotHost,
    PrivateRoomDenied,
    RoomFull,
)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(slots=True, frozen=True)
class UserIdentity:
    id: int
    name: str
    picture: str | None = None
    is_online: bool = False
    last_seen: datetime | None = None

    def to_public(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "picture": self.picture}


@dataclass(slots=True, frozen=True)
class PlaybackState:
    is_playing: bool = False
    current_time: float = 0.0
    duration: float = 0.0
    last_updated: datetime | None = None

    def to_public(self) -> dict[str, Any]:
        return {
            "isPlaying": self.is_playing,
            "currentTime": self.current_time,
            "duration": self.duration,
            "lastUpdated": _isoformat(self.last_updated),
        }


@dataclass(slots=True, frozen=True)
class MediaReference:
    name: str | None = None
    size: int = 0
    type: str | None = None
    url: str | None = None

    def to_public(self) -> dict[str, Any]:
        return {"name": self.name, "size": self.size, "type": self.type, "url": self.url}


@dataclass(slots=True, frozen=True)
class MovieReference:
    name: str = ""
    year: int | None = None
    poster: str | None = None
    duration: int = 0
    genre: str = ""

    def to_public(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "year": self.year,
            "poster": self.poster,
            "duration": self.duration,
            "genre": self.genre,
        }


@dataclass(slots=True, frozen=True)
class RoomSettings:
    allow_chat: bool = True
    allow_video_upload: bool = True
    autoplay: bool = False
    sync_tolerance: float = 5.0

    def to_public(self) -> dict[str, Any]:
        return {
            "allowChat": self.allow_chat,
            "allowVideoUpload": self.allow_video_upload,
            "autoPlay": self.autoplay,
            "syncTolerance": self.sync_tolerance,
        }


@dataclass(slots=True, frozen=True)
class ParticipantRecord:
    user: UserIdentity
    joined_at: datetime
    is_host: bool = False
    is_active: bool = True
    last_seen: datetime | None = None

    def to_public(self, *, include_joined_at: bool = False) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "user": self.user.to_public(),
            "isHost": self.is_host,
            "isActive": self.is_active,
        }
        if include_joined_at:
            payload["joinedAt"] = _isoformat(self.joined_at)
        return payload


@dataclass(slots=True, frozen=True)
class RoomRecord:
    id: int
    name: str
    host: UserIdentity
    description: str = ""
    movie: MovieReference = field(default_factory=MovieReference)
    media: MediaReference = field(default_factory=MediaReference)
    status: RoomStatus = RoomStatus.WAITING
    playback: PlaybackState = field(default_factory=PlaybackState)
    settings: RoomSettings = field(default_factory=RoomSettings)
    is_private: bool = False
    password_hash: str | None = None
    max_participants: int = 50
    current_participants: int = 0
    peak_participants: int = 0
    participants: tuple[ParticipantRecord, ...] = ()

    def participant(self, user_id: int) -> ParticipantRecord | None:
        for record in self.participants:
            if record.user.id == user_id:
                return record
        return None

    def is_host(self, user_id: int) -> bool:
        return self.host.id == user_id


def check_join_eligibility(
    room: RoomRecord,
    user_id: int,
    password: str | None,
    *,
    verify_password: Callable[[str, str], bool],
) -> None:
    """Raise the first rule a join request violates.

    Capacity is measured on the cached count. An identity that already holds an
    active record (a second tab) does not add to the count and is let through.
    The host skips the private-room and password rules.
    """

    existing = room.participant(user_id)
    already_active = existing is not None and existing.is_active
    if not already_active and room.current_participants >= room.max_participants:
        raise RoomFull()

    if room.is_host(user_id):
        return

    if room.is_private and existing is None:
        raise PrivateRoomDenied()

    if room.password_hash:
        if not password or not verify_password(password, room.password_hash):
            raise InvalidCredential()


def ensure_host(room: RoomRecord, user_id: int) -> None:
    if not room.is_host(user_id):
        raise NotHost()


def derive_status(is_playing: bool) -> RoomStatus:
    return RoomStatus.PLAYING if is_playing else RoomStatus.PAUSED


def serialize_roster(room: RoomRecord, *, include_joined_at: bool = False) -> list[dict[str, Any]]:
    return [
        record.to_public(include_joined_at=include_joined_at) for record in room.participants
    ]


def build_room_snapshot(room: RoomRecord) -> dict[str, Any]:
    """Full room state sent to a connection right after it joins."""

    return {
        "id": room.id,
        "name": room.name,
        "description": room.description,
        "host": room.host.to_public(),
        "movie": room.movie.to_public(),
        "videoFile": room.media.to_public(),
        "status": room.status.value,
        "playbackState": room.playback.to_public(),
        "settings": room.settings.to_public(),
        "isPrivate": room.is_private,
        "maxParticipants": room.max_participants,
        "currentParticipants": room.current_participants,
        "participants": serialize_roster(room, include_joined_at=True),
    }


__all__ = [
    "UserIdentity",
    "PlaybackState",
    "MediaReference",
    "MovieReference",
    "RoomSettings",
    "ParticipantRecord",
    "RoomRecord",
    "check_join_eligibility",
    "ensure_host",
    "derive_status",
    "serialize_roster",
    "build_room_snapshot",
]
