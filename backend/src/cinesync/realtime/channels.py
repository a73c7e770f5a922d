"""Room fan-out channels."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Dict, Iterable, Sequence, Set

from app.monitoring.metrics import realtime_connections, realtime_events_total

from .connection import Connection
from .events import Audience, Emission


class RoomChannels:
    """Track connections subscribed to each room's broadcast channel."""

    def __init__(self) -> None:
        self._members: Dict[int, Set[Connection]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def connect(self, room_id: int, connection: Connection) -> None:
        async with self._lock:
            bucket = self._members[room_id]
            if connection not in bucket:
                bucket.add(connection)
                realtime_connections.labels("rooms").inc()

    async def disconnect(self, room_id: int, connection: Connection) -> None:
        async with self._lock:
            members = self._members.get(room_id)
            if members and connection in members:
                members.remove(connection)
                realtime_connections.labels("rooms").dec()
                if not members:
                    self._members.pop(room_id, None)

    async def members(self, room_id: int) -> set[Connection]:
        async with self._lock:
            return set(self._members.get(room_id, ()))

    async def broadcast(
        self,
        room_id: int,
        payload: dict[str, Any],
        *,
        exclude: Iterable[Connection] | None = None,
    ) -> int:
        exclude_set = set(exclude or [])
        delivered = 0
        for connection in await self.members(room_id):
            if connection in exclude_set:
                continue
            if await connection.send(payload):
                delivered += 1
        return delivered

    async def deliver(
        self,
        origin: Connection,
        room_id: int | None,
        emissions: Sequence[Emission],
    ) -> None:
        """Send each emission to its audience relative to ``origin``."""

        for emission in emissions:
            frame = emission.frame()
            if emission.audience is Audience.SELF:
                await origin.send(frame)
            elif room_id is not None:
                exclude = {origin} if emission.audience is Audience.OTHERS else None
                await self.broadcast(room_id, frame, exclude=exclude)
            realtime_events_total.labels("rooms", "out", emission.event.value).inc()
