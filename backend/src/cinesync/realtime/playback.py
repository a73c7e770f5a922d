"""Host-only control of the shared playback clock and media reference."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from ..rooms.directory import RoomDirectory
from ..rooms.state import (
    MediaReference,
    RoomRecord,
    ensure_host,
)
from .channels import RoomChannels
from .connection import Connection
from .errors import NotHost, NotInRoom
from .events import Audience, Emission, OutboundEvent
from .presence import utcnow

logger = logging.getLogger(__name__)


def _clock_payload(room: RoomRecord) -> dict:
    state = room.playback
    return {
        "currentTime": state.current_time,
        "isPlaying": state.is_playing,
        "lastUpdated": state.last_updated.isoformat() if state.last_updated else None,
    }


def _media_payload(room: RoomRecord) -> dict:
    media = room.media
    # "type" names the frame, so the MIME type travels as "mimeType".
    return {"name": media.name, "size": media.size, "mimeType": media.type, "url": media.url}


class PlaybackAuthority:
    """Applies playback commands from the host and fans them out to the room.

    The host check runs twice: once against a fresh snapshot, and again in the
    conditional write, which only matches while the sender still hosts the room.
    """

    def __init__(
        self,
        directory: RoomDirectory,
        channels: RoomChannels,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._directory = directory
        self._channels = channels
        self._clock = clock

    def _require_room(self, connection: Connection) -> int:
        room_id = connection.room_id
        if connection.user is None or room_id is None or not connection.is_joined_to(room_id):
            raise NotInRoom()
        return room_id

    async def _authorize(self, connection: Connection) -> RoomRecord:
        room_id = self._require_room(connection)
        room = await self._directory.load_room(room_id)
        ensure_host(room, connection.user.id)
        return room

    async def set_playing(
        self, connection: Connection, is_playing: bool, current_time: float | None = None
    ) -> RoomRecord:
        room = await self._authorize(connection)
        now = self._clock()
        updated = await self._directory.persist_playback_state(
            room.id,
            connection.user.id,
            now=now,
            is_playing=is_playing,
            current_time=current_time,
        )
        if updated is None:
            raise NotHost()

        event = OutboundEvent.VIDEO_PLAY if is_playing else OutboundEvent.VIDEO_PAUSE
        logger.info("Room %s %s at %.3f", room.id, event.value, updated.playback.current_time)
        await self._channels.deliver(
            connection, room.id, [Emission(event, _clock_payload(updated), Audience.OTHERS)]
        )
        return updated

    async def seek(self, connection: Connection, time: float) -> RoomRecord:
        room = await self._authorize(connection)
        updated = await self._directory.persist_playback_state(
            room.id, connection.user.id, now=self._clock(), current_time=time
        )
        if updated is None:
            raise NotHost()

        await self._channels.deliver(
            connection,
            room.id,
            [Emission(OutboundEvent.VIDEO_SEEK, {"time": updated.playback.current_time}, Audience.OTHERS)],
        )
        return updated

    async def set_media(self, connection: Connection, media: MediaReference) -> RoomRecord:
        room = await self._authorize(connection)
        updated = await self._directory.persist_media(room.id, connection.user.id, media)
        if updated is None:
            raise NotHost()

        logger.info("Room %s media set to %s", room.id, media.name)
        await self._channels.deliver(
            connection,
            room.id,
            [Emission(OutboundEvent.VIDEO_METADATA, _media_payload(updated), Audience.OTHERS)],
        )
        return updated
