"""Join/leave lifecycle of a connection inside a room."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from ..rooms.directory import RoomDirectory
from ..rooms.state import (
    RoomRecord,
    UserIdentity,
    build_room_snapshot,
    check_join_eligibility,
    serialize_roster,
)
from .channels import RoomChannels
from .connection import Connection, MembershipPhase
from .errors import RoomNotFound, Unauthenticated
from .events import Audience, Emission, OutboundEvent
from .presence import utcnow
from .registry import ConnectionRegistry, IdentityLocks

logger = logging.getLogger(__name__)


def coerce_room_id(value: Any) -> int:
    """Room ids arrive as JSON numbers or strings; anything else cannot exist."""

    if isinstance(value, bool):
        raise RoomNotFound()
    try:
        room_id = int(str(value).strip())
    except (TypeError, ValueError):
        raise RoomNotFound() from None
    if room_id <= 0:
        raise RoomNotFound()
    return room_id


def _membership_change(room: RoomRecord, user: UserIdentity) -> dict[str, Any]:
    return {
        "roomId": room.id,
        "user": user.to_public(),
        "participants": serialize_roster(room),
        "currentParticipants": room.current_participants,
    }


def join_emissions(room: RoomRecord, user: UserIdentity, *, newly_active: bool) -> list[Emission]:
    """Frames produced by a successful join.

    A user coming back from inactive (or appearing for the first time) is
    announced with ``user-joined``; another tab of an already active user only
    refreshes the roster with ``participants-updated``.
    """

    event = OutboundEvent.USER_JOINED if newly_active else OutboundEvent.PARTICIPANTS_UPDATED
    return [
        Emission(OutboundEvent.ROOM_JOINED, {"room": build_room_snapshot(room)}, Audience.SELF),
        Emission(event, _membership_change(room, user), Audience.OTHERS),
    ]


def leave_emissions(room: RoomRecord | None, user: UserIdentity, *, confirm: bool, room_id: int) -> list[Emission]:
    emissions: list[Emission] = []
    if room is not None:
        emissions.append(
            Emission(OutboundEvent.USER_LEFT, _membership_change(room, user), Audience.OTHERS)
        )
    if confirm:
        emissions.append(Emission(OutboundEvent.ROOM_LEFT, {"roomId": room_id}, Audience.SELF))
    return emissions


class MembershipCoordinator:
    """Reconciles durable participant records with live connections."""

    def __init__(
        self,
        directory: RoomDirectory,
        registry: ConnectionRegistry,
        channels: RoomChannels,
        locks: IdentityLocks,
        *,
        verify_password: Callable[[str, str], bool],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._directory = directory
        self._registry = registry
        self._channels = channels
        self._locks = locks
        self._verify_password = verify_password
        self._clock = clock

    async def join(
        self, connection: Connection, room_ref: Any, *, password: str | None = None
    ) -> RoomRecord:
        user = connection.user
        if user is None:
            raise Unauthenticated()
        room_id = coerce_room_id(room_ref)

        async with self._locks.hold(user.id):
            room = await self._directory.load_room(room_id)
            check_join_eligibility(
                room, user.id, password, verify_password=self._verify_password
            )

            if connection.room_id is not None and connection.room_id != room_id:
                await self.release_locked(connection, confirm=False)

            room, newly_active = await self._activate_locked(connection, room, user)

        logger.info("User %s joined room %s (connection %s)", user.id, room_id, connection.id[:8])
        await self._channels.deliver(
            connection, room_id, join_emissions(room, user, newly_active=newly_active)
        )
        return room

    async def leave(self, connection: Connection) -> bool:
        """Unbind ``connection`` from its room and confirm with ``room-left``.

        When another connection of the same identity is still joined to the
        room, the participant record stays active and the roster is unchanged,
        so the rest of the room receives no ``user-left`` or
        ``participants-updated``. Only the leaving connection hears back.
        Returns ``False`` when the connection was not in a room.
        """

        user = connection.user
        if user is None or connection.room_id is None:
            return False
        async with self._locks.hold(user.id):
            await self.release_locked(connection, confirm=True)
        return True

    async def release_locked(self, connection: Connection, *, confirm: bool) -> RoomRecord | None:
        """Drop the room binding of ``connection`` and deactivate if it was the last.

        The participant record stays active while another connection of the
        same identity is still joined to the room. The caller must hold the
        identity lock.
        """

        user = connection.user
        room_id = connection.room_id
        if user is None or room_id is None:
            return None

        connection.phase = MembershipPhase.LEAVING
        await self._channels.disconnect(room_id, connection)
        connection.clear_room()

        room = await self._deactivate_if_last_locked(connection, room_id, user)
        if room is not None:
            logger.info("User %s left room %s", user.id, room_id)
        await self._channels.deliver(
            connection, room_id, leave_emissions(room, user, confirm=confirm, room_id=room_id)
        )
        return room

    async def _activate_locked(
        self, connection: Connection, room: RoomRecord, user: UserIdentity
    ) -> tuple[RoomRecord, bool]:
        room_id = room.id
        connection.phase = MembershipPhase.JOINING
        connection.room_id = room_id
        await self._channels.connect(room_id, connection)
        activated = False
        try:
            newly_active = await self._directory.upsert_participant(
                room_id, user.id, is_host=room.is_host(user.id), now=self._clock()
            )
            activated = True
            await self._directory.recompute_active_count(room_id)
            room = await self._directory.load_room(room_id)
        except BaseException:
            await self._channels.disconnect(room_id, connection)
            connection.clear_room()
            if activated:
                await self._rollback_activation_locked(connection, room_id, user)
            raise
        connection.bind_room(room_id)
        return room, newly_active

    async def _rollback_activation_locked(
        self, connection: Connection, room_id: int, user: UserIdentity
    ) -> None:
        try:
            await self._deactivate_if_last_locked(connection, room_id, user)
        except Exception:
            logger.exception("Failed to roll back participant %s in room %s", user.id, room_id)

    async def _deactivate_if_last_locked(
        self, connection: Connection, room_id: int, user: UserIdentity
    ) -> RoomRecord | None:
        for other in await self._registry.handles_for(user.id):
            if other is not connection and other.room_id == room_id:
                return None

        await self._directory.set_participant_active(room_id, user.id, False, now=self._clock())
        await self._directory.recompute_active_count(room_id)
        try:
            return await self._directory.load_room(room_id)
        except RoomNotFound:
            return None
