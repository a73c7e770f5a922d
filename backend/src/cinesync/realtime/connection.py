"""Per-socket state owned by the realtime core."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from ..rooms.state import UserIdentity

logger = logging.getLogger(__name__)


class MembershipPhase(str, Enum):
    UNJOINED = "unjoined"
    JOINING = "joining"
    JOINED = "joined"
    LEAVING = "leaving"


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Safely send JSON data through websocket, handling disconnections gracefully.

    Returns True if message was sent successfully, False otherwise.
    """
    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


@dataclass(eq=False)
class Connection:
    """One live websocket session.

    Compared by identity so the same user can hold several connections in
    registry and channel sets.
    """

    websocket: WebSocket
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    user: UserIdentity | None = None
    room_id: int | None = None
    phase: MembershipPhase = MembershipPhase.UNJOINED

    @property
    def user_id(self) -> int | None:
        return self.user.id if self.user is not None else None

    def is_joined_to(self, room_id: int) -> bool:
        return self.phase is MembershipPhase.JOINED and self.room_id == room_id

    def bind_room(self, room_id: int) -> None:
        self.room_id = room_id
        self.phase = MembershipPhase.JOINED

    def clear_room(self) -> None:
        self.room_id = None
        self.phase = MembershipPhase.UNJOINED

    async def send(self, payload: dict[str, Any]) -> bool:
        return await safe_send_json(self.websocket, payload)

    def describe(self) -> str:
        who = self.user_id if self.user is not None else "anonymous"
        return f"{self.id[:8]}(user={who}, room={self.room_id})"
