"""Database models package."""

from .base import Base
from .enums import RoomStatus
from .theater import Room, RoomParticipant, User

__all__ = [
    "Base",
    "User",
    "Room",
    "RoomParticipant",
    "RoomStatus",
]
