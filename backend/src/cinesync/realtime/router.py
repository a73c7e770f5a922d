"""Dispatch of decoded websocket frames to the realtime components."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from app.monitoring.metrics import realtime_dropped_total, realtime_events_total

from ..rooms.state import MediaReference
from .connection import Connection
from .errors import InternalError, InvalidPayload, NotHost, NotInRoom, RealtimeError
from .events import (
    AuthenticatePayload,
    InboundEvent,
    JoinRoomPayload,
    MessagePayload,
    OutboundEvent,
    PlaybackPayload,
    SeekPayload,
    SignalPayload,
    VideoMetadataPayload,
    ensure_exhaustive,
    parse_inbound,
)
from .membership import MembershipCoordinator
from .playback import PlaybackAuthority
from .presence import PresenceTracker
from .signaling import SignalingRelay

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, InboundEvent, Any], Awaitable[None]]


async def send_error(connection: Connection, error: RealtimeError) -> None:
    await connection.send({"type": OutboundEvent.ERROR.value, **error.to_payload()})


class EventRouter:
    """Maps every inbound frame kind to exactly one handler."""

    def __init__(
        self,
        presence: PresenceTracker,
        membership: MembershipCoordinator,
        playback: PlaybackAuthority,
        relay: SignalingRelay,
        *,
        notify_not_host: bool = False,
    ) -> None:
        self._presence = presence
        self._membership = membership
        self._playback = playback
        self._relay = relay
        self._notify_not_host = notify_not_host
        self._handlers: dict[InboundEvent, Handler] = {
            InboundEvent.AUTHENTICATE: self._on_authenticate,
            InboundEvent.JOIN_ROOM: self._on_join,
            InboundEvent.LEAVE_ROOM: self._on_leave,
            InboundEvent.VIDEO_PLAY: self._on_playback,
            InboundEvent.VIDEO_PAUSE: self._on_playback,
            InboundEvent.VIDEO_SEEK: self._on_seek,
            InboundEvent.VIDEO_METADATA: self._on_metadata,
            InboundEvent.CHAT_MESSAGE: self._on_room_message,
            InboundEvent.VOICE_MESSAGE: self._on_room_message,
            InboundEvent.OFFER: self._on_signal,
            InboundEvent.ANSWER: self._on_signal,
            InboundEvent.ICE_CANDIDATE: self._on_signal,
            InboundEvent.PING: self._on_ping,
        }
        ensure_exhaustive(self._handlers, owner=type(self).__name__)

    async def dispatch(self, connection: Connection, message: Any) -> None:
        try:
            event, payload = parse_inbound(message)
        except InvalidPayload as exc:
            await send_error(connection, exc)
            return

        realtime_events_total.labels("theater", "in", event.value).inc()
        try:
            await self._handlers[event](connection, event, payload)
        except (NotHost, NotInRoom) as exc:
            realtime_dropped_total.labels(exc.code).inc()
            logger.debug("Dropped %s from %s: %s", event.value, connection.describe(), exc.detail)
            if self._notify_not_host and isinstance(exc, NotHost):
                await send_error(connection, exc)
        except RealtimeError as exc:
            logger.info("Rejected %s from %s: %s", event.value, connection.describe(), exc.detail)
            await send_error(connection, exc)
        except Exception:
            logger.exception("Failed to handle %s from %s", event.value, connection.describe())
            await send_error(connection, InternalError())

    async def authenticate(self, connection: Connection, token: str) -> bool:
        """Bind ``token``'s identity to ``connection`` and report the outcome to it."""

        try:
            user = await self._presence.authenticate(connection, token)
        except RealtimeError as exc:
            logger.info("Authentication failed on %s: %s", connection.describe(), exc.detail)
            await connection.send({"type": OutboundEvent.AUTH_ERROR.value, **exc.to_payload()})
            return False
        await connection.send({"type": OutboundEvent.AUTHENTICATED.value, "user": user.to_public()})
        return True

    async def _on_authenticate(
        self, connection: Connection, event: InboundEvent, payload: AuthenticatePayload
    ) -> None:
        await self.authenticate(connection, payload.token)

    async def _on_join(
        self, connection: Connection, event: InboundEvent, payload: JoinRoomPayload
    ) -> None:
        await self._membership.join(connection, payload.room_id, password=payload.password)

    async def _on_leave(self, connection: Connection, event: InboundEvent, payload: Any) -> None:
        if not await self._membership.leave(connection):
            raise NotInRoom()

    async def _on_playback(
        self, connection: Connection, event: InboundEvent, payload: PlaybackPayload
    ) -> None:
        await self._playback.set_playing(
            connection, event is InboundEvent.VIDEO_PLAY, payload.current_time
        )

    async def _on_seek(self, connection: Connection, event: InboundEvent, payload: SeekPayload) -> None:
        await self._playback.seek(connection, payload.time)

    async def _on_metadata(
        self, connection: Connection, event: InboundEvent, payload: VideoMetadataPayload
    ) -> None:
        media = MediaReference(
            name=payload.name, size=payload.size, type=payload.mime_type, url=payload.url
        )
        await self._playback.set_media(connection, media)

    async def _on_room_message(
        self, connection: Connection, event: InboundEvent, payload: MessagePayload
    ) -> None:
        await self._relay.broadcast(connection, event, payload.message)

    async def _on_signal(
        self, connection: Connection, event: InboundEvent, payload: SignalPayload
    ) -> None:
        await self._relay.relay(connection, payload.to, connection.room_id, event, payload.body(event))

    async def _on_ping(self, connection: Connection, event: InboundEvent, payload: Any) -> None:
        await connection.send({"type": OutboundEvent.PONG.value})
