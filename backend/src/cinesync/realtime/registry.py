"""Process-local map from a user identity to its live connections."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Set

from app.monitoring.metrics import realtime_online_identities

from .connection import Connection


class ConnectionRegistry:
    """Tracks every live connection of each authenticated identity.

    Nothing here is persisted: after a restart the registry is empty, which is
    equivalent to every identity having disconnected.
    """

    def __init__(self) -> None:
        self._connections: Dict[int, Set[Connection]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def bind(self, user_id: int, connection: Connection) -> bool:
        """Add ``connection``; return ``True`` when it is the identity's first one."""

        async with self._lock:
            bucket = self._connections[user_id]
            became_online = not bucket
            bucket.add(connection)
            realtime_online_identities.set(len(self._connections))
            return became_online

    async def unbind(self, user_id: int, connection: Connection) -> bool:
        """Remove ``connection``; return ``True`` when the identity has none left."""

        async with self._lock:
            bucket = self._connections.get(user_id)
            if not bucket or connection not in bucket:
                return False
            bucket.discard(connection)
            if bucket:
                return False
            self._connections.pop(user_id, None)
            realtime_online_identities.set(len(self._connections))
            return True

    async def handles_for(self, user_id: int) -> set[Connection]:
        async with self._lock:
            return set(self._connections.get(user_id, ()))


@dataclass(slots=True)
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class IdentityLocks:
    """One ``asyncio.Lock`` per identity, dropped once nobody holds or awaits it.

    Authentication, joins, leaves and disconnects of the same identity run under
    this lock so presence and roster writes for that identity never interleave.
    """

    def __init__(self) -> None:
        self._entries: Dict[int, _LockEntry] = {}

    @asynccontextmanager
    async def hold(self, user_id: int) -> AsyncIterator[None]:
        entry = self._entries.get(user_id)
        if entry is None:
            entry = self._entries[user_id] = _LockEntry()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                self._entries.pop(user_id, None)

    def __len__(self) -> int:
        return len(self._entries)
