"""Read-only room endpoints backed by the durable store."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.deps import get_optional_user
from app.core.security import verify_password
from app.database import get_db
from app.models import User
from app.schemas import JoinCheck, ParticipantRead, RoomParticipantsRead
from app.services.room_directory import load_room_record
from cinesync.realtime.errors import InvalidCredential, RealtimeError, RoomNotFound
from cinesync.rooms.state import RoomRecord, build_room_snapshot, check_join_eligibility

router = APIRouter(prefix="/rooms", tags=["rooms"])


def _ensure_room_exists(room_id: int, db: Session) -> RoomRecord:
    try:
        return load_room_record(db, room_id)
    except RoomNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found") from None


def evaluate_join(room: RoomRecord, user_id: int) -> JoinCheck:
    """Run the join rules without a password, reporting a password as a requirement."""

    try:
        check_join_eligibility(room, user_id, None, verify_password=verify_password)
    except InvalidCredential:
        return JoinCheck(can_join=True, requires_password=True)
    except RealtimeError as exc:
        return JoinCheck(can_join=False, reason=exc.code)
    return JoinCheck(can_join=True)


@router.get("/{room_id}")
def read_room(
    room_id: int,
    db: Session = Depends(get_db),
    current_user: User | None = Depends(get_optional_user),
) -> dict[str, Any]:
    """Return the room snapshot; the participant count is the cached one."""

    room = _ensure_room_exists(room_id, db)
    payload = build_room_snapshot(room)
    if current_user is not None:
        payload["access"] = evaluate_join(room, current_user.id).model_dump(by_alias=True)
    return payload


@router.get("/{room_id}/participants", response_model=RoomParticipantsRead)
def read_room_participants(room_id: int, db: Session = Depends(get_db)) -> RoomParticipantsRead:
    room = _ensure_room_exists(room_id, db)
    return RoomParticipantsRead(
        room_id=room.id,
        current_participants=room.current_participants,
        max_participants=room.max_participants,
        participants=[
            ParticipantRead.model_validate(record, from_attributes=True)
            for record in room.participants
        ],
    )
