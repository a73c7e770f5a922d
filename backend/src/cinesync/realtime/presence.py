"""Binding authenticated identities to connections and the online flag."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from ..rooms.directory import RoomDirectory
from ..rooms.state import UserIdentity
from .connection import Connection
from .errors import InvalidToken
from .registry import ConnectionRegistry, IdentityLocks

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PresenceTracker:
    """Owns the identity side of a connection's lifecycle."""

    def __init__(
        self,
        directory: RoomDirectory,
        registry: ConnectionRegistry,
        locks: IdentityLocks,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._directory = directory
        self._registry = registry
        self._locks = locks
        self._clock = clock

    async def authenticate(self, connection: Connection, token: str) -> UserIdentity:
        user = await self._directory.verify_credential(token)
        if connection.user is not None:
            if connection.user.id == user.id:
                return connection.user
            raise InvalidToken("Connection is already authenticated as another user")

        async with self._locks.hold(user.id):
            await self._registry.bind(user.id, connection)
            connection.user = user
            try:
                await self._directory.set_user_online(user.id, True, now=self._clock())
            except Exception:
                connection.user = None
                await self._registry.unbind(user.id, connection)
                raise
        logger.info("User %s authenticated on connection %s", user.id, connection.id[:8])
        return user

    async def release_locked(self, connection: Connection) -> bool:
        """Unbind ``connection``; persist offline when it was the last one.

        The caller must hold the identity lock of ``connection.user``.
        """

        user = connection.user
        if user is None:
            return False
        became_offline = await self._registry.unbind(user.id, connection)
        if became_offline:
            await self._directory.set_user_online(user.id, False, now=self._clock())
            logger.info("User %s went offline", user.id)
        return became_offline
