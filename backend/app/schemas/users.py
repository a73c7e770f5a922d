"""Schemas related to viewer identities."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class PublicUser(BaseModel):
    """Minimal public-facing user information."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    picture: str | None = None


class OnlineUserRead(PublicUser):
    """Entry of the online users listing."""

    is_online: bool = Field(default=True, serialization_alias="isOnline")
    last_seen: datetime | None = Field(default=None, serialization_alias="lastSeen")
