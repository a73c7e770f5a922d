"""Peer-to-peer signal relay and room-wide message fan-out."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from app.monitoring.metrics import realtime_relay_deliveries_total

from .channels import RoomChannels
from .connection import Connection
from .errors import InvalidPayload, NotInRoom
from .events import BROADCAST_EVENTS, SIGNAL_EVENTS, InboundEvent, OutboundEvent
from .presence import utcnow
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)


def build_signal_envelope(
    event: InboundEvent, sender_id: int, room_id: int, payload: Any
) -> dict[str, Any]:
    return {
        "type": OutboundEvent(event.value).value,
        "from": sender_id,
        "roomId": room_id,
        "payload": payload,
    }


def _coerce_target(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


class SignalingRelay:
    """Routes offer/answer/candidate frames between two members of one room."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        channels: RoomChannels,
        *,
        max_message_length: int = 2000,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._registry = registry
        self._channels = channels
        self._max_message_length = max_message_length
        self._clock = clock

    @staticmethod
    def _require_room(sender: Connection, room_id: int | None) -> int:
        if (
            sender.user is None
            or room_id is None
            or not sender.is_joined_to(room_id)
        ):
            raise NotInRoom()
        return room_id

    async def relay(
        self,
        sender: Connection,
        target: Any,
        room_id: int | None,
        event: InboundEvent,
        payload: Any,
    ) -> int:
        """Deliver a signal to every connection of ``target`` joined to ``room_id``.

        Returns the number of connections reached; zero when the target is
        offline, in another room, or not a valid identity.
        """

        if event not in SIGNAL_EVENTS:
            raise InvalidPayload(f"{event.value} is not a signaling event")
        room_id = self._require_room(sender, room_id)
        target_id = _coerce_target(target)
        if target_id is None:
            logger.debug("Dropping %s from %s: invalid target %r", event.value, sender.describe(), target)
            return 0

        envelope = build_signal_envelope(event, sender.user.id, room_id, payload)
        delivered = 0
        for handle in await self._registry.handles_for(target_id):
            if handle is sender or not handle.is_joined_to(room_id):
                continue
            if await handle.send(envelope):
                delivered += 1

        if delivered:
            realtime_relay_deliveries_total.labels(event.value).inc(delivered)
        else:
            logger.debug(
                "No connection of user %s in room %s for %s", target_id, room_id, event.value
            )
        return delivered

    async def broadcast(self, sender: Connection, event: InboundEvent, message: Any) -> int:
        """Fan a chat or voice message out to the sender's room, minus the sender."""

        if event not in BROADCAST_EVENTS:
            raise InvalidPayload(f"{event.value} is not a room message")
        room_id = self._require_room(sender, sender.room_id)
        if isinstance(message, str):
            message = message.strip()
            if len(message) > self._max_message_length:
                raise InvalidPayload(
                    f"Message exceeds {self._max_message_length} characters"
                )

        frame = {
            "type": OutboundEvent(event.value).value,
            "roomId": room_id,
            "user": sender.user.to_public(),
            "message": message,
            "timestamp": self._clock().isoformat(),
        }
        return await self._channels.broadcast(room_id, frame, exclude={sender})
