"""Realtime room core: presence, membership, playback and signaling.

Import :mod:`cinesync.realtime.service` for the process-wide instances; this
package itself only exposes the error types so that the store layer can raise
them without pulling in the wiring.
"""

from .errors import (  # noqa: F401
    InternalError,
    InvalidCredential,
    InvalidPayload,
    InvalidToken,
    NotHost,
    NotInRoom,
    PrivateRoomDenied,
    RealtimeError,
    RoomFull,
    RoomNotFound,
    Unauthenticated,
)
