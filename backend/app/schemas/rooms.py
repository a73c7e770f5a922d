"""Schemas for the read-only room endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.users import PublicUser


class ParticipantRead(BaseModel):
    """Roster entry of a room."""

    model_config = ConfigDict(from_attributes=True)

    user: PublicUser
    is_host: bool = Field(serialization_alias="isHost")
    is_active: bool = Field(serialization_alias="isActive")
    joined_at: datetime | None = Field(default=None, serialization_alias="joinedAt")


class RoomParticipantsRead(BaseModel):
    """Roster of a room with the cached active count."""

    room_id: int = Field(serialization_alias="roomId")
    current_participants: int = Field(serialization_alias="currentParticipants")
    max_participants: int = Field(serialization_alias="maxParticipants")
    participants: list[ParticipantRead]


class JoinCheck(BaseModel):
    """Whether the requesting user could join right now."""

    can_join: bool = Field(serialization_alias="canJoin")
    requires_password: bool = Field(default=False, serialization_alias="requiresPassword")
    reason: str | None = None
