"""Contract between the realtime core and the durable room/user store."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from .state import MediaReference, RoomRecord, UserIdentity


class RoomDirectory(Protocol):
    """Durable operations the realtime core relies on.

    Every mutating call is a single conditional update keyed on the unique
    sub-record it touches, never a read-modify-write of a cached room.
    """

    async def verify_credential(self, token: str) -> UserIdentity:
        """Resolve a bearer token to a user or raise ``InvalidToken``."""

    async def load_room(self, room_id: int) -> RoomRecord:
        """Return a fresh room snapshot or raise ``RoomNotFound``."""

    async def upsert_participant(
        self, room_id: int, user_id: int, *, is_host: bool, now: datetime
    ) -> bool:
        """Activate the (room, user) record, inserting it when missing.

        Returns ``True`` when the record was inactive or absent before the call.
        An already active record is only touched. Otherwise the live active count
        is checked against ``max_participants`` in the same write, raising
        ``RoomFull``; a missing room raises ``RoomNotFound``. ``joined_at`` is
        set on insert only.
        """

    async def set_participant_active(
        self, room_id: int, user_id: int, active: bool, *, now: datetime
    ) -> bool:
        """Flip ``is_active`` on an existing record; ``False`` when nothing matched."""

    async def recompute_active_count(self, room_id: int) -> int:
        """Persist ``count(is_active)`` as the cached participant count."""

    async def persist_playback_state(
        self,
        room_id: int,
        host_id: int,
        *,
        now: datetime,
        is_playing: bool | None = None,
        current_time: float | None = None,
    ) -> RoomRecord | None:
        """Write playback fields if ``host_id`` still hosts the room."""

    async def persist_media(
        self, room_id: int, host_id: int, media: MediaReference
    ) -> RoomRecord | None:
        """Write the media reference if ``host_id`` still hosts the room."""

    async def set_user_online(self, user_id: int, online: bool, *, now: datetime) -> None:
        """Persist the presence flag and ``last_seen``."""

    async def reset_presence(self, *, now: datetime) -> tuple[int, int]:
        """Demote every online user and active participant; return both counts."""
