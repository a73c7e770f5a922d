from __future__ import annotations

from enum import Enum


class RoomStatus(str, Enum):
    """Coarse playback status of a room, derived from the shared clock."""

    WAITING = "waiting"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"
