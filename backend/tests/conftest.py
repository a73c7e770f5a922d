"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import asyncio
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterator

import pytest
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketState
from passlib.context import CryptContext
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.core import security
from app.database import get_db
from app.main import app
from app.models import Base
from app.services.room_directory import SqlRoomDirectory
from cinesync.realtime import service
from cinesync.realtime.connection import Connection
from cinesync.realtime.errors import InvalidToken, RoomFull, RoomNotFound
from cinesync.realtime.service import TheaterCore, build_core
from cinesync.rooms.state import (
    MediaReference,
    MovieReference,
    ParticipantRecord,
    RoomRecord,
    UserIdentity,
    derive_status,
)

security.pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def test_engine() -> Iterator[Engine]:
    """Provide an in-memory SQLite engine for isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(test_engine) -> sessionmaker[Session]:
    """Return a session factory bound to the test engine."""

    return sessionmaker(bind=test_engine, future=True)


@pytest.fixture()
def db_session(session_factory) -> Iterator[Session]:
    """Yield a SQLAlchemy session for unit tests."""

    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(session_factory, monkeypatch) -> Iterator[TestClient]:
    """Yield a FastAPI TestClient with the database dependency overridden.

    The realtime core is rebuilt per test so its asyncio locks belong to the
    client's event loop and its store calls hit the test engine.
    """

    def override_get_db() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    monkeypatch.setattr(service, "theater_core", build_core(SqlRoomDirectory(session_factory)))
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# In-memory realtime doubles
# ---------------------------------------------------------------------------


class DummyWebSocket:
    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []
        self.closed_with: int | None = None

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code
        self.application_state = WebSocketState.DISCONNECTED

    def of_type(self, event: str) -> list[dict[str, Any]]:
        return [frame for frame in self.sent if frame.get("type") == event]


class FakeRoomDirectory:
    """Dict backed room directory yielding to the loop on every call.

    The ``asyncio.sleep(0)`` in each method gives concurrently scheduled
    handlers the same interleaving points a real store round trip would.
    """

    def __init__(self) -> None:
        self.users: dict[int, UserIdentity] = {}
        self.tokens: dict[str, int] = {}
        self.rooms: dict[int, RoomRecord] = {}
        self.participants: dict[tuple[int, int], ParticipantRecord] = {}
        self.online: dict[int, bool] = {}
        self.online_writes: list[tuple[int, bool]] = []
        self.failing: set[str] = set()

    def add_user(self, user_id: int, name: str | None = None) -> str:
        self.users[user_id] = UserIdentity(id=user_id, name=name or f"user-{user_id}")
        token = f"token-{user_id}"
        self.tokens[token] = user_id
        return token

    def add_room(self, room_id: int, host_id: int, **overrides: Any) -> RoomRecord:
        room = RoomRecord(
            id=room_id,
            name=f"Room {room_id}",
            host=self.users[host_id],
            movie=MovieReference(name="Night of the Living Test", year=1968),
            **overrides,
        )
        self.rooms[room_id] = room
        return room

    def participant(self, room_id: int, user_id: int) -> ParticipantRecord | None:
        return self.participants.get((room_id, user_id))

    def active_count(self, room_id: int) -> int:
        return sum(
            1
            for (rid, _), record in self.participants.items()
            if rid == room_id and record.is_active
        )

    async def _checkpoint(self, name: str) -> None:
        await asyncio.sleep(0)
        if name in self.failing:
            raise RuntimeError(f"{name} failed")

    async def verify_credential(self, token: str) -> UserIdentity:
        await self._checkpoint("verify_credential")
        user_id = self.tokens.get(token)
        if user_id is None:
            raise InvalidToken()
        return self.users[user_id]

    async def load_room(self, room_id: int) -> RoomRecord:
        await self._checkpoint("load_room")
        room = self.rooms.get(room_id)
        if room is None:
            raise RoomNotFound()
        records = sorted(
            (record for (rid, _), record in self.participants.items() if rid == room_id),
            key=lambda record: record.joined_at,
        )
        return replace(room, participants=tuple(records))

    async def upsert_participant(
        self, room_id: int, user_id: int, *, is_host: bool, now: datetime
    ) -> bool:
        await self._checkpoint("upsert_participant")
        room = self.rooms.get(room_id)
        if room is None:
            raise RoomNotFound()
        existing = self.participants.get((room_id, user_id))
        if existing is not None and existing.is_active:
            self.participants[(room_id, user_id)] = replace(existing, is_host=is_host, last_seen=now)
            return False
        if self.active_count(room_id) >= room.max_participants:
            raise RoomFull()
        if existing is not None:
            self.participants[(room_id, user_id)] = replace(
                existing, is_host=is_host, is_active=True, last_seen=now
            )
            return True
        self.participants[(room_id, user_id)] = ParticipantRecord(
            user=self.users[user_id], joined_at=now, is_host=is_host, is_active=True, last_seen=now
        )
        return True

    async def set_participant_active(
        self, room_id: int, user_id: int, active: bool, *, now: datetime
    ) -> bool:
        await self._checkpoint("set_participant_active")
        existing = self.participants.get((room_id, user_id))
        if existing is None:
            return False
        self.participants[(room_id, user_id)] = replace(existing, is_active=active, last_seen=now)
        return True

    async def recompute_active_count(self, room_id: int) -> int:
        await self._checkpoint("recompute_active_count")
        count = self.active_count(room_id)
        room = self.rooms[room_id]
        self.rooms[room_id] = replace(
            room, current_participants=count, peak_participants=max(room.peak_participants, count)
        )
        return count

    async def persist_playback_state(
        self,
        room_id: int,
        host_id: int,
        *,
        now: datetime,
        is_playing: bool | None = None,
        current_time: float | None = None,
    ) -> RoomRecord | None:
        await self._checkpoint("persist_playback_state")
        room = self.rooms.get(room_id)
        if room is None or room.host.id != host_id:
            return None
        playback = replace(room.playback, last_updated=now)
        if is_playing is not None:
            playback = replace(playback, is_playing=is_playing)
        if current_time is not None:
            playback = replace(playback, current_time=float(current_time))
        status = derive_status(is_playing) if is_playing is not None else room.status
        self.rooms[room_id] = replace(room, playback=playback, status=status)
        return await self.load_room(room_id)

    async def persist_media(
        self, room_id: int, host_id: int, media: MediaReference
    ) -> RoomRecord | None:
        await self._checkpoint("persist_media")
        room = self.rooms.get(room_id)
        if room is None or room.host.id != host_id:
            return None
        self.rooms[room_id] = replace(room, media=media)
        return await self.load_room(room_id)

    async def set_user_online(self, user_id: int, online: bool, *, now: datetime) -> None:
        await self._checkpoint("set_user_online")
        self.online[user_id] = online
        self.online_writes.append((user_id, online))

    async def reset_presence(self, *, now: datetime) -> tuple[int, int]:
        await self._checkpoint("reset_presence")
        users = [user_id for user_id, online in self.online.items() if online]
        for user_id in users:
            self.online[user_id] = False
        active = [key for key, record in self.participants.items() if record.is_active]
        for key in active:
            self.participants[key] = replace(self.participants[key], is_active=False, last_seen=now)
        for room_id in {room_id for room_id, _ in active}:
            await self.recompute_active_count(room_id)
        return len(users), len(active)


@pytest.fixture()
def dummy_websocket() -> DummyWebSocket:
    return DummyWebSocket()


@pytest.fixture()
def fake_directory() -> FakeRoomDirectory:
    return FakeRoomDirectory()


@pytest.fixture()
def core(fake_directory) -> TheaterCore:
    """Realtime core over the in-memory directory; room passwords compare in plain text."""

    return build_core(
        fake_directory,
        verify_password=lambda plain, stored: plain == stored,
        max_message_length=50,
    )


@pytest.fixture()
def open_socket(core) -> Callable[..., Awaitable[Connection]]:
    """Open a connection on ``core``, authenticating it when a token is given."""

    async def _open(token: str | None = None) -> Connection:
        connection = await core.open_connection(DummyWebSocket())
        if token is not None:
            assert await core.router.authenticate(connection, token)
        return connection

    return _open
