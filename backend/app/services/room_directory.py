"""SQLAlchemy implementation of the room directory used by the realtime core."""

from __future__ import annotations

import functools
import logging
from datetime import datetime
from typing import Any, Callable, TypeVar

import anyio
import jwt
from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from app.core.security import decode_token_subject
from app.database import SessionLocal
from app.models import Room, RoomParticipant, User

from cinesync.realtime.errors import InvalidToken, RoomFull, RoomNotFound
from cinesync.rooms.state import (
    MediaReference,
    MovieReference,
    ParticipantRecord,
    PlaybackState,
    RoomRecord,
    RoomSettings,
    UserIdentity,
    derive_status,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NO_SYNC = {"synchronize_session": False}


def to_identity(user: User) -> UserIdentity:
    return UserIdentity(
        id=user.id,
        name=user.name,
        picture=user.picture,
        is_online=user.is_online,
        last_seen=user.last_seen,
    )


def to_record(room: Room) -> RoomRecord:
    """Detach an ORM room (with host and participants loaded) into a snapshot."""

    return RoomRecord(
        id=room.id,
        name=room.name,
        description=room.description or "",
        host=to_identity(room.host),
        movie=MovieReference(
            name=room.movie_name,
            year=room.movie_year,
            poster=room.movie_poster,
            duration=room.movie_duration,
            genre=room.movie_genre,
        ),
        media=MediaReference(
            name=room.video_name,
            size=room.video_size,
            type=room.video_type,
            url=room.video_url,
        ),
        status=room.status,
        playback=PlaybackState(
            is_playing=room.is_playing,
            current_time=room.current_time,
            duration=room.duration,
            last_updated=room.playback_updated_at,
        ),
        settings=RoomSettings(
            allow_chat=room.allow_chat,
            allow_video_upload=room.allow_video_upload,
            autoplay=room.autoplay,
            sync_tolerance=room.sync_tolerance,
        ),
        is_private=room.is_private,
        password_hash=room.password_hash,
        max_participants=room.max_participants,
        current_participants=room.current_participants,
        peak_participants=room.peak_participants,
        participants=tuple(
            ParticipantRecord(
                user=to_identity(participant.user),
                joined_at=participant.joined_at,
                is_host=participant.is_host,
                is_active=participant.is_active,
                last_seen=participant.last_seen,
            )
            for participant in room.participants
        ),
    )


def get_user_identity(db: Session, user_id: int) -> UserIdentity:
    user = db.get(User, user_id)
    if user is None:
        raise InvalidToken("Unknown user")
    return to_identity(user)


def load_room_record(db: Session, room_id: int) -> RoomRecord:
    stmt = (
        select(Room)
        .where(Room.id == room_id)
        .options(
            selectinload(Room.host),
            selectinload(Room.participants).selectinload(RoomParticipant.user),
        )
        .execution_options(populate_existing=True)
    )
    room = db.execute(stmt).scalar_one_or_none()
    if room is None:
        raise RoomNotFound()
    return to_record(room)


def _participant_filter(room_id: int, user_id: int):
    return (RoomParticipant.room_id == room_id, RoomParticipant.user_id == user_id)


def _lock_room_capacity(db: Session, room_id: int) -> int:
    """Lock the room row for the rest of the transaction and return its capacity.

    Joins into one room serialize on this lock, so the capacity check below and
    the activation it guards commit together.
    """

    capacity = db.execute(
        select(Room.max_participants).where(Room.id == room_id).with_for_update()
    ).scalar_one_or_none()
    if capacity is None:
        raise RoomNotFound()
    return capacity


def _count_active(db: Session, room_id: int) -> int:
    return db.execute(
        select(func.count(RoomParticipant.id)).where(
            RoomParticipant.room_id == room_id, RoomParticipant.is_active.is_(True)
        )
    ).scalar_one()


def _activate(db: Session, room_id: int, user_id: int, *, is_host: bool, now: datetime) -> bool | None:
    """Touch or reactivate an existing record.

    Returns ``False`` when it was already active, ``True`` when it was
    reactivated and ``None`` when no record exists. Raises ``RoomFull`` instead
    of reactivating into a full room. ``joined_at`` keeps the first join.
    """

    touched = db.execute(
        update(RoomParticipant)
        .where(*_participant_filter(room_id, user_id), RoomParticipant.is_active.is_(True))
        .values(is_host=is_host, last_seen=now)
        .execution_options(**_NO_SYNC)
    )
    if touched.rowcount:
        return False

    capacity = _lock_room_capacity(db, room_id)
    if _count_active(db, room_id) >= capacity:
        raise RoomFull()

    reactivated = db.execute(
        update(RoomParticipant)
        .where(*_participant_filter(room_id, user_id))
        .values(is_active=True, is_host=is_host, last_seen=now)
        .execution_options(**_NO_SYNC)
    )
    if reactivated.rowcount:
        return True
    return None


def upsert_participant(
    db: Session, room_id: int, user_id: int, *, is_host: bool, now: datetime
) -> bool:
    """Insert-or-activate the (room, user) record; ``True`` when it became active.

    An identity that is already active is only touched. Anyone else is let in
    only while the live active count is below ``max_participants``.
    """

    try:
        outcome = _activate(db, room_id, user_id, is_host=is_host, now=now)
        if outcome is None:
            db.add(
                RoomParticipant(
                    room_id=room_id,
                    user_id=user_id,
                    joined_at=now,
                    is_host=is_host,
                    is_active=True,
                    last_seen=now,
                )
            )
            outcome = True
        db.commit()
        return outcome
    except IntegrityError:
        # Lost the insert race on uq_room_participant; the row exists now.
        db.rollback()
    except (RoomFull, RoomNotFound):
        db.rollback()
        raise

    try:
        outcome = _activate(db, room_id, user_id, is_host=is_host, now=now)
    except RoomFull:
        db.rollback()
        raise
    db.commit()
    return bool(outcome)


def set_participant_active(
    db: Session, room_id: int, user_id: int, active: bool, *, now: datetime
) -> bool:
    result = db.execute(
        update(RoomParticipant)
        .where(*_participant_filter(room_id, user_id))
        .values(is_active=active, last_seen=now)
        .execution_options(**_NO_SYNC)
    )
    db.commit()
    return bool(result.rowcount)


def _recompute(db: Session, room_id: int) -> None:
    active = (
        select(func.count(RoomParticipant.id))
        .where(RoomParticipant.room_id == room_id, RoomParticipant.is_active.is_(True))
        .scalar_subquery()
    )
    db.execute(
        update(Room)
        .where(Room.id == room_id)
        .values(
            current_participants=active,
            peak_participants=case(
                (Room.peak_participants < active, active),
                else_=Room.peak_participants,
            ),
        )
        .execution_options(**_NO_SYNC)
    )


def recompute_active_count(db: Session, room_id: int) -> int:
    """Persist the number of active records as the room's cached count."""

    _recompute(db, room_id)
    db.commit()
    count = db.execute(select(Room.current_participants).where(Room.id == room_id)).scalar_one_or_none()
    return int(count or 0)


def persist_playback_state(
    db: Session,
    room_id: int,
    host_id: int,
    *,
    now: datetime,
    is_playing: bool | None = None,
    current_time: float | None = None,
) -> RoomRecord | None:
    values: dict[Any, Any] = {Room.playback_updated_at: now}
    if is_playing is not None:
        values[Room.is_playing] = is_playing
        values[Room.status] = derive_status(is_playing)
    if current_time is not None:
        values[Room.current_time] = float(current_time)

    result = db.execute(
        update(Room)
        .where(Room.id == room_id, Room.host_id == host_id)
        .values(values)
        .execution_options(**_NO_SYNC)
    )
    db.commit()
    if not result.rowcount:
        return None
    return load_room_record(db, room_id)


def persist_media(db: Session, room_id: int, host_id: int, media: MediaReference) -> RoomRecord | None:
    result = db.execute(
        update(Room)
        .where(Room.id == room_id, Room.host_id == host_id)
        .values(
            video_name=media.name,
            video_size=media.size,
            video_type=media.type,
            video_url=media.url,
        )
        .execution_options(**_NO_SYNC)
    )
    db.commit()
    if not result.rowcount:
        return None
    return load_room_record(db, room_id)


def set_user_online(db: Session, user_id: int, online: bool, *, now: datetime) -> None:
    db.execute(
        update(User)
        .where(User.id == user_id)
        .values(is_online=online, last_seen=now)
        .execution_options(**_NO_SYNC)
    )
    db.commit()


def reset_presence(db: Session, *, now: datetime) -> tuple[int, int]:
    """Demote everyone a previous process left online or active."""

    users = db.execute(
        update(User)
        .where(User.is_online.is_(True))
        .values(is_online=False, last_seen=now)
        .execution_options(**_NO_SYNC)
    ).rowcount

    room_ids = list(
        db.execute(
            select(RoomParticipant.room_id).where(RoomParticipant.is_active.is_(True)).distinct()
        ).scalars()
    )
    participants = db.execute(
        update(RoomParticipant)
        .where(RoomParticipant.is_active.is_(True))
        .values(is_active=False, last_seen=now)
        .execution_options(**_NO_SYNC)
    ).rowcount
    for room_id in room_ids:
        _recompute(db, room_id)
    db.commit()
    return int(users or 0), int(participants or 0)


def list_online_users(db: Session) -> list[UserIdentity]:
    stmt = select(User).where(User.is_online.is_(True)).order_by(User.name, User.id)
    return [to_identity(user) for user in db.execute(stmt).scalars()]


class SqlRoomDirectory:
    """Runs the store functions above on worker threads, one session per call."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self.session_factory = session_factory or SessionLocal

    def _call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        with self.session_factory() as db:
            return fn(db, *args, **kwargs)

    async def _run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        return await anyio.to_thread.run_sync(functools.partial(self._call, fn, *args, **kwargs))

    async def verify_credential(self, token: str) -> UserIdentity:
        try:
            user_id = decode_token_subject(token)
        except jwt.ExpiredSignatureError:
            raise InvalidToken("Token has expired") from None
        except jwt.InvalidTokenError:
            raise InvalidToken() from None
        return await self._run(get_user_identity, user_id)

    async def load_room(self, room_id: int) -> RoomRecord:
        return await self._run(load_room_record, room_id)

    async def upsert_participant(
        self, room_id: int, user_id: int, *, is_host: bool, now: datetime
    ) -> bool:
        return await self._run(upsert_participant, room_id, user_id, is_host=is_host, now=now)

    async def set_participant_active(
        self, room_id: int, user_id: int, active: bool, *, now: datetime
    ) -> bool:
        return await self._run(set_participant_active, room_id, user_id, active, now=now)

    async def recompute_active_count(self, room_id: int) -> int:
        return await self._run(recompute_active_count, room_id)

    async def persist_playback_state(
        self,
        room_id: int,
        host_id: int,
        *,
        now: datetime,
        is_playing: bool | None = None,
        current_time: float | None = None,
    ) -> RoomRecord | None:
        return await self._run(
            persist_playback_state,
            room_id,
            host_id,
            now=now,
            is_playing=is_playing,
            current_time=current_time,
        )

    async def persist_media(
        self, room_id: int, host_id: int, media: MediaReference
    ) -> RoomRecord | None:
        return await self._run(persist_media, room_id, host_id, media)

    async def set_user_online(self, user_id: int, online: bool, *, now: datetime) -> None:
        await self._run(set_user_online, user_id, online, now=now)

    async def reset_presence(self, *, now: datetime) -> tuple[int, int]:
        return await self._run(reset_presence, now=now)
