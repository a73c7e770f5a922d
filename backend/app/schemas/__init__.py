"""Pydantic schemas for API payloads."""

from .rooms import JoinCheck, ParticipantRead, RoomParticipantsRead
from .users import OnlineUserRead, PublicUser

__all__ = [
    "PublicUser",
    "OnlineUserRead",
    "ParticipantRead",
    "RoomParticipantsRead",
    "JoinCheck",
]
