"""Process-wide wiring of the realtime room core."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable

from fastapi import status
from fastapi.websockets import WebSocket

from app.config import get_settings
from app.core.security import verify_password as verify_room_password
from app.monitoring.metrics import realtime_connections
from app.services.room_directory import SqlRoomDirectory

from ..rooms.directory import RoomDirectory
from .channels import RoomChannels
from .connection import Connection
from .membership import MembershipCoordinator
from .playback import PlaybackAuthority
from .presence import PresenceTracker
from .reconciler import DisconnectReconciler
from .registry import ConnectionRegistry, IdentityLocks
from .router import EventRouter
from .signaling import SignalingRelay

logger = logging.getLogger(__name__)


@dataclass
class TheaterCore:
    """All realtime components sharing one registry, channel map and lock table."""

    directory: RoomDirectory
    registry: ConnectionRegistry
    channels: RoomChannels
    locks: IdentityLocks
    presence: PresenceTracker
    membership: MembershipCoordinator
    playback: PlaybackAuthority
    relay: SignalingRelay
    reconciler: DisconnectReconciler
    router: EventRouter
    connections: set[Connection] = field(default_factory=set)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    async def open_connection(self, websocket: WebSocket) -> Connection:
        connection = Connection(websocket)
        async with self._lock:
            self.connections.add(connection)
        realtime_connections.labels("theater").inc()
        return connection

    async def close_connection(self, connection: Connection) -> None:
        """Run disconnect reconciliation exactly once per connection."""

        async with self._lock:
            if connection not in self.connections:
                return
            self.connections.discard(connection)
        realtime_connections.labels("theater").dec()
        await self.reconciler.reconcile(connection)


def build_core(
    directory: RoomDirectory,
    *,
    verify_password: Callable[[str, str], bool] = verify_room_password,
    notify_not_host: bool = False,
    max_message_length: int = 2000,
) -> TheaterCore:
    registry = ConnectionRegistry()
    channels = RoomChannels()
    locks = IdentityLocks()
    presence = PresenceTracker(directory, registry, locks)
    membership = MembershipCoordinator(
        directory, registry, channels, locks, verify_password=verify_password
    )
    playback = PlaybackAuthority(directory, channels)
    relay = SignalingRelay(registry, channels, max_message_length=max_message_length)
    reconciler = DisconnectReconciler(presence, membership, channels, locks, directory)
    router = EventRouter(
        presence, membership, playback, relay, notify_not_host=notify_not_host
    )
    return TheaterCore(
        directory=directory,
        registry=registry,
        channels=channels,
        locks=locks,
        presence=presence,
        membership=membership,
        playback=playback,
        relay=relay,
        reconciler=reconciler,
        router=router,
    )


settings = get_settings()

theater_core = build_core(
    SqlRoomDirectory(),
    notify_not_host=settings.realtime_notify_not_host,
    max_message_length=settings.chat_message_max_length,
)


async def startup_realtime() -> None:
    if not settings.realtime_presence_reset_on_startup:
        return
    try:
        await theater_core.reconciler.reset_presence()
    except Exception:
        logger.exception("Presence reset failed during startup; stale online flags may remain")


async def shutdown_realtime() -> None:
    for connection in list(theater_core.connections):
        try:
            await connection.websocket.close(code=status.WS_1001_GOING_AWAY)
        except RuntimeError:
            logger.debug("Connection %s already closed", connection.describe())
        await theater_core.close_connection(connection)


def get_theater_core() -> TheaterCore:
    return theater_core


__all__ = [
    "TheaterCore",
    "build_core",
    "startup_realtime",
    "shutdown_realtime",
    "get_theater_core",
]
