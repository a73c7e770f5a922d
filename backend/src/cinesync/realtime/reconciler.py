"""Cleanup run when a websocket goes away, however it goes away."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from app.monitoring.metrics import realtime_cleanup_errors_total

from ..rooms.directory import RoomDirectory
from .channels import RoomChannels
from .connection import Connection
from .membership import MembershipCoordinator
from .presence import PresenceTracker, utcnow
from .registry import IdentityLocks

logger = logging.getLogger(__name__)


class DisconnectReconciler:
    """Undo everything a connection contributed to presence and membership.

    Each step is best effort: a failing store call is logged and counted, and
    the remaining steps still run. The connection is always released from its
    room channel at the end.
    """

    def __init__(
        self,
        presence: PresenceTracker,
        membership: MembershipCoordinator,
        channels: RoomChannels,
        locks: IdentityLocks,
        directory: RoomDirectory,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._presence = presence
        self._membership = membership
        self._channels = channels
        self._locks = locks
        self._directory = directory
        self._clock = clock

    async def reconcile(self, connection: Connection) -> None:
        room_id = connection.room_id
        try:
            user = connection.user
            if user is None:
                return
            async with self._locks.hold(user.id):
                try:
                    await self._presence.release_locked(connection)
                except Exception:
                    realtime_cleanup_errors_total.labels("presence").inc()
                    logger.exception("Failed to release presence for user %s", user.id)

                try:
                    await self._membership.release_locked(connection, confirm=False)
                except Exception:
                    realtime_cleanup_errors_total.labels("membership").inc()
                    logger.exception(
                        "Failed to release membership for user %s in room %s", user.id, room_id
                    )
        finally:
            if room_id is not None:
                await self._channels.disconnect(room_id, connection)
            connection.clear_room()

    async def reset_presence(self) -> tuple[int, int]:
        """Demote identities and records left online by a previous process."""

        users, participants = await self._directory.reset_presence(now=self._clock())
        if users or participants:
            logger.info(
                "Reset presence: %s users offline, %s participant records inactive",
                users,
                participants,
            )
        return users, participants
