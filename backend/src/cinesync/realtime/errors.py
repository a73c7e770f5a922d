"""Failures raised by the realtime room core."""

from __future__ import annotations


class RealtimeError(Exception):
    """Base error carrying a machine readable ``code`` for ``error`` frames."""

    code = "error"
    default_detail = "Request failed"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    def to_payload(self) -> dict[str, str]:
        return {"code": self.code, "detail": self.detail}


class Unauthenticated(RealtimeError):
    code = "unauthenticated"
    default_detail = "Not authenticated"


class InvalidToken(RealtimeError):
    code = "invalid_token"
    default_detail = "Invalid token"


class RoomNotFound(RealtimeError):
    code = "room_not_found"
    default_detail = "Room not found"


class RoomFull(RealtimeError):
    code = "room_full"
    default_detail = "Room is full"


class PrivateRoomDenied(RealtimeError):
    code = "private_room"
    default_detail = "Private room"


class InvalidCredential(RealtimeError):
    code = "invalid_credential"
    default_detail = "Invalid room password"


class NotHost(RealtimeError):
    """Playback command from a non-host; dropped without notifying the room."""

    code = "not_host"
    default_detail = "Only the host can control playback"


class NotInRoom(RealtimeError):
    """Room scoped command from a connection without a room binding."""

    code = "not_in_room"
    default_detail = "Join a room first"


class InvalidPayload(RealtimeError):
    code = "invalid_payload"
    default_detail = "Invalid message payload"


class InternalError(RealtimeError):
    code = "internal_error"
    default_detail = "Internal server error"


__all__ = [
    "RealtimeError",
    "Unauthenticated",
    "InvalidToken",
    "RoomNotFound",
    "RoomFull",
    "PrivateRoomDenied",
    "InvalidCredential",
    "NotHost",
    "NotInRoom",
    "InvalidPayload",
    "InternalError",
]
