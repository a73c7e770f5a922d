from __future__ import annotations

import logging

import pytest

from cinesync.realtime.errors import InvalidPayload
from cinesync.realtime.events import (
    Audience,
    Emission,
    InboundEvent,
    JoinRoomPayload,
    OutboundEvent,
    PAYLOAD_MODELS,
    PlaybackPayload,
    SignalPayload,
    ensure_exhaustive,
    parse_inbound,
)


def test_every_inbound_event_has_a_payload_model() -> None:
    assert set(PAYLOAD_MODELS) == set(InboundEvent)


def test_ensure_exhaustive_names_missing_events() -> None:
    with pytest.raises(RuntimeError, match="ping"):
        ensure_exhaustive(set(InboundEvent) - {InboundEvent.PING}, owner="table")


def test_parse_inbound_accepts_aliases() -> None:
    event, payload = parse_inbound({"type": "join-room", "roomId": "12", "password": "p"})
    assert event is InboundEvent.JOIN_ROOM
    assert isinstance(payload, JoinRoomPayload)
    assert payload.room_id == "12"

    _, playback = parse_inbound({"type": "video-play", "time": 3})
    assert isinstance(playback, PlaybackPayload)
    assert playback.current_time == 3.0

    _, auth = parse_inbound({"type": "authenticate", "credential": "jwt"})
    assert auth.token == "jwt"


@pytest.mark.parametrize(
    "message, fragment",
    [
        ([], "JSON object"),
        ({}, "type must be provided"),
        ({"type": "teleport"}, "Unsupported message type"),
        ({"type": "video-seek"}, "video-seek"),
        ({"type": "video-seek", "time": float("nan")}, "video-seek"),
        ({"type": "chat-message", "message": "   "}, "chat-message"),
        ({"type": "offer", "payload": {}}, "offer"),
        ({"type": "authenticate", "token": ""}, "authenticate"),
    ],
)
def test_parse_inbound_rejects_malformed_frames(message, fragment) -> None:
    with pytest.raises(InvalidPayload, match=fragment):
        parse_inbound(message)


def test_signal_payload_prefers_explicit_payload() -> None:
    payload = SignalPayload.model_validate({"to": 3, "payload": {"a": 1}, "offer": {"b": 2}})
    assert payload.body(InboundEvent.OFFER) == {"a": 1}

    legacy = SignalPayload.model_validate({"to": 3, "candidate": {"c": 1}})
    assert legacy.body(InboundEvent.ICE_CANDIDATE) == {"c": 1}
    assert legacy.body(InboundEvent.OFFER) is None


def test_emission_frame_keeps_event_type() -> None:
    emission = Emission(OutboundEvent.VIDEO_SEEK, {"time": 5, "type": "bogus"}, Audience.OTHERS)
    assert emission.frame() == {"time": 5, "type": "video-seek"}


@pytest.mark.anyio
async def test_router_answers_ping_and_reports_bad_frames(core, open_socket) -> None:
    connection = await open_socket()

    await core.router.dispatch(connection, {"type": "ping"})
    await core.router.dispatch(connection, {"type": "nope"})
    await core.router.dispatch(connection, {"type": "join-room", "roomId": 1})

    assert connection.websocket.sent[0] == {"type": "pong"}
    assert connection.websocket.sent[1]["code"] == "invalid_payload"
    assert connection.websocket.sent[2] == {
        "type": "error",
        "code": "unauthenticated",
        "detail": "Not authenticated",
    }


@pytest.mark.anyio
async def test_router_authenticate_frame(core, fake_directory, open_socket) -> None:
    token = fake_directory.add_user(4, "Dana")
    connection = await open_socket()

    await core.router.dispatch(connection, {"type": "authenticate", "token": token})
    await core.router.dispatch(connection, {"type": "authenticate", "token": token})

    assert connection.websocket.sent == [
        {"type": "authenticated", "user": {"id": 4, "name": "Dana", "picture": None}},
        {"type": "authenticated", "user": {"id": 4, "name": "Dana", "picture": None}},
    ]
    assert fake_directory.online[4] is True


@pytest.mark.anyio
async def test_router_reports_join_rejections(core, fake_directory, open_socket) -> None:
    fake_directory.add_user(1)
    token = fake_directory.add_user(2)
    fake_directory.add_room(10, host_id=1, max_participants=0)
    connection = await open_socket(token)
    connection.websocket.sent.clear()

    await core.router.dispatch(connection, {"type": "join-room", "roomId": 10})
    await core.router.dispatch(connection, {"type": "join-room", "roomId": 77})

    assert [frame["code"] for frame in connection.websocket.sent] == ["room_full", "room_not_found"]


@pytest.mark.anyio
async def test_router_hides_store_failures(core, fake_directory, open_socket, caplog) -> None:
    fake_directory.add_user(1)
    token = fake_directory.add_user(2)
    fake_directory.add_room(10, host_id=1)
    connection = await open_socket(token)
    connection.websocket.sent.clear()
    fake_directory.failing.add("load_room")

    with caplog.at_level(logging.ERROR):
        await core.router.dispatch(connection, {"type": "join-room", "roomId": 10})

    assert connection.websocket.sent == [
        {"type": "error", "code": "internal_error", "detail": "Internal server error"}
    ]
    assert "Failed to handle join-room" in caplog.text


@pytest.mark.anyio
async def test_explicit_leave_confirms_to_leaver(core, fake_directory, open_socket) -> None:
    token = fake_directory.add_user(1)
    fake_directory.add_room(10, host_id=1)
    connection = await open_socket(token)
    await core.router.dispatch(connection, {"type": "join-room", "roomId": 10})
    connection.websocket.sent.clear()

    await core.router.dispatch(connection, {"type": "leave-room"})
    await core.router.dispatch(connection, {"type": "leave-room"})

    assert connection.websocket.sent == [{"type": "room-left", "roomId": 10}]
