"""User presence endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.schemas import OnlineUserRead
from app.services.room_directory import list_online_users

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/online", response_model=list[OnlineUserRead])
def read_online_users(db: Session = Depends(get_db)) -> list[OnlineUserRead]:
    """Users whose durable presence flag is set."""

    return [
        OnlineUserRead.model_validate(identity, from_attributes=True)
        for identity in list_online_users(db)
    ]
