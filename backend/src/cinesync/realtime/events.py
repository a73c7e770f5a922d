"""Closed vocabulary of websocket frames exchanged with theater clients."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import InvalidPayload


class InboundEvent(str, Enum):
    """Frame types a client may send."""

    AUTHENTICATE = "authenticate"
    JOIN_ROOM = "join-room"
    LEAVE_ROOM = "leave-room"
    VIDEO_PLAY = "video-play"
    VIDEO_PAUSE = "video-pause"
    VIDEO_SEEK = "video-seek"
    VIDEO_METADATA = "video-metadata"
    CHAT_MESSAGE = "chat-message"
    VOICE_MESSAGE = "voice-message"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    PING = "ping"


class OutboundEvent(str, Enum):
    """Frame types the server may send."""

    AUTHENTICATED = "authenticated"
    AUTH_ERROR = "auth-error"
    ROOM_JOINED = "room-joined"
    ROOM_LEFT = "room-left"
    USER_JOINED = "user-joined"
    USER_LEFT = "user-left"
    PARTICIPANTS_UPDATED = "participants-updated"
    VIDEO_PLAY = "video-play"
    VIDEO_PAUSE = "video-pause"
    VIDEO_SEEK = "video-seek"
    VIDEO_METADATA = "video-metadata"
    CHAT_MESSAGE = "chat-message"
    VOICE_MESSAGE = "voice-message"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    ERROR = "error"
    PING = "ping"
    PONG = "pong"


SIGNAL_EVENTS = frozenset({InboundEvent.OFFER, InboundEvent.ANSWER, InboundEvent.ICE_CANDIDATE})
BROADCAST_EVENTS = frozenset({InboundEvent.CHAT_MESSAGE, InboundEvent.VOICE_MESSAGE})

# Legacy clients put the SDP/candidate body under a key named after the event.
_SIGNAL_BODY_KEYS = {
    InboundEvent.OFFER: "offer",
    InboundEvent.ANSWER: "answer",
    InboundEvent.ICE_CANDIDATE: "candidate",
}


class Audience(str, Enum):
    """Who receives an :class:`Emission` relative to the originating connection."""

    SELF = "self"
    OTHERS = "others"
    ROOM = "room"


@dataclass(slots=True, frozen=True)
class Emission:
    """An outbound frame produced by a room operation, not yet delivered."""

    event: OutboundEvent
    payload: Mapping[str, Any]
    audience: Audience = Audience.SELF

    def frame(self) -> dict[str, Any]:
        return {**self.payload, "type": self.event.value}


# ---------------------------------------------------------------------------
# Inbound payloads
# ---------------------------------------------------------------------------


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


def _check_timestamp(value: float | None) -> float | None:
    if value is None:
        return None
    if not math.isfinite(value) or value < 0:
        raise ValueError("time must be a non-negative number of seconds")
    return value


class AuthenticatePayload(_Payload):
    token: str = Field(min_length=1, validation_alias=AliasChoices("token", "credential"))


class JoinRoomPayload(_Payload):
    room_id: int | str = Field(validation_alias=AliasChoices("roomId", "room_id"))
    password: str | None = None


class EmptyPayload(_Payload):
    pass


class PlaybackPayload(_Payload):
    current_time: float | None = Field(
        default=None, validation_alias=AliasChoices("currentTime", "current_time", "time")
    )

    @field_validator("current_time")
    @classmethod
    def validate_time(cls, value: float | None) -> float | None:
        return _check_timestamp(value)


class SeekPayload(_Payload):
    time: float = Field(validation_alias=AliasChoices("time", "currentTime", "current_time"))

    @field_validator("time")
    @classmethod
    def validate_time(cls, value: float) -> float:
        return _check_timestamp(value)


class VideoMetadataPayload(_Payload):
    name: str | None = Field(default=None, max_length=255)
    size: int = Field(default=0, ge=0)
    mime_type: str | None = Field(
        default=None, max_length=128, validation_alias=AliasChoices("mimeType", "mediaType")
    )
    url: str | None = Field(default=None, max_length=2048)


class MessagePayload(_Payload):
    message: Any = None

    @field_validator("message")
    @classmethod
    def require_content(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValueError("message must not be empty")
        return value


class SignalPayload(_Payload):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    to: int | str
    payload: Any = None

    def body(self, event: InboundEvent) -> Any:
        if self.payload is not None:
            return self.payload
        extra = self.model_extra or {}
        return extra.get(_SIGNAL_BODY_KEYS.get(event, ""))


PAYLOAD_MODELS: dict[InboundEvent, type[_Payload]] = {
    InboundEvent.AUTHENTICATE: AuthenticatePayload,
    InboundEvent.JOIN_ROOM: JoinRoomPayload,
    InboundEvent.LEAVE_ROOM: EmptyPayload,
    InboundEvent.VIDEO_PLAY: PlaybackPayload,
    InboundEvent.VIDEO_PAUSE: PlaybackPayload,
    InboundEvent.VIDEO_SEEK: SeekPayload,
    InboundEvent.VIDEO_METADATA: VideoMetadataPayload,
    InboundEvent.CHAT_MESSAGE: MessagePayload,
    InboundEvent.VOICE_MESSAGE: MessagePayload,
    InboundEvent.OFFER: SignalPayload,
    InboundEvent.ANSWER: SignalPayload,
    InboundEvent.ICE_CANDIDATE: SignalPayload,
    InboundEvent.PING: EmptyPayload,
}


def ensure_exhaustive(handled: Iterable[InboundEvent], *, owner: str) -> None:
    """Fail fast when a table keyed by inbound event misses a kind."""

    missing = set(InboundEvent) - set(handled)
    if missing:
        names = ", ".join(sorted(event.value for event in missing))
        raise RuntimeError(f"{owner} does not handle inbound events: {names}")


ensure_exhaustive(PAYLOAD_MODELS, owner="PAYLOAD_MODELS")


def parse_inbound(message: Any) -> tuple[InboundEvent, _Payload]:
    """Validate a decoded JSON frame into its event kind and payload model."""

    if not isinstance(message, dict):
        raise InvalidPayload("Message payload must be a JSON object")
    raw_type = message.get("type")
    if not isinstance(raw_type, str) or not raw_type:
        raise InvalidPayload("Message type must be provided")
    try:
        event = InboundEvent(raw_type)
    except ValueError:
        raise InvalidPayload(f"Unsupported message type: {raw_type}") from None

    body = {key: value for key, value in message.items() if key != "type"}
    try:
        payload = PAYLOAD_MODELS[event].model_validate(body)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        reason = first.get("msg", "invalid value")
        detail = f"{location}: {reason}" if location else reason
        raise InvalidPayload(f"Invalid {event.value} payload ({detail})") from None
    return event, payload


__all__ = [
    "InboundEvent",
    "OutboundEvent",
    "Audience",
    "Emission",
    "SIGNAL_EVENTS",
    "BROADCAST_EVENTS",
    "AuthenticatePayload",
    "JoinRoomPayload",
    "EmptyPayload",
    "PlaybackPayload",
    "SeekPayload",
    "VideoMetadataPayload",
    "MessagePayload",
    "SignalPayload",
    "PAYLOAD_MODELS",
    "ensure_exhaustive",
    "parse_inbound",
]
