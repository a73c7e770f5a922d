from __future__ import annotations

import pytest

from app.monitoring.metrics import realtime_relay_deliveries_total
from cinesync.realtime.errors import InvalidPayload, NotInRoom
from cinesync.realtime.events import InboundEvent


pytestmark = pytest.mark.anyio


@pytest.fixture(autouse=True)
def reset_relay_metrics() -> None:
    realtime_relay_deliveries_total.clear()
    yield
    realtime_relay_deliveries_total.clear()


@pytest.fixture()
async def two_rooms(core, fake_directory, open_socket):
    """Host 1 owns rooms 10 and 11; user 2 has a tab in each; user 3 sits in room 10."""

    host_token = fake_directory.add_user(1)
    target_token = fake_directory.add_user(2)
    other_token = fake_directory.add_user(3)
    fake_directory.add_room(10, host_id=1)
    fake_directory.add_room(11, host_id=1)

    sender = await open_socket(host_token)
    target_in_10 = await open_socket(target_token)
    target_in_11 = await open_socket(target_token)
    bystander = await open_socket(other_token)
    await core.membership.join(sender, 10)
    await core.membership.join(target_in_10, 10)
    await core.membership.join(target_in_11, 11)
    await core.membership.join(bystander, 10)
    for connection in (sender, target_in_10, target_in_11, bystander):
        connection.websocket.sent.clear()
    return sender, target_in_10, target_in_11, bystander


async def test_relay_reaches_only_target_connections_in_sender_room(core, two_rooms) -> None:
    sender, target_in_10, target_in_11, bystander = two_rooms

    delivered = await core.relay.relay(sender, 2, 10, InboundEvent.OFFER, {"sdp": "v=0"})

    assert delivered == 1
    assert target_in_10.websocket.sent == [
        {"type": "offer", "from": 1, "roomId": 10, "payload": {"sdp": "v=0"}}
    ]
    assert target_in_11.websocket.sent == []
    assert bystander.websocket.sent == []
    assert realtime_relay_deliveries_total.snapshot() == {("offer",): 1.0}


async def test_relay_to_absent_target_delivers_nothing(core, fake_directory, two_rooms) -> None:
    sender, *_ = two_rooms
    fake_directory.add_user(4)

    assert await core.relay.relay(sender, 4, 10, InboundEvent.ANSWER, {}) == 0
    assert await core.relay.relay(sender, "not-a-user", 10, InboundEvent.ANSWER, {}) == 0
    assert await core.relay.relay(sender, True, 10, InboundEvent.ANSWER, {}) == 0


async def test_relay_never_echoes_to_sender_connection(core, fake_directory, open_socket) -> None:
    fake_directory.add_user(1)
    token = fake_directory.add_user(2)
    fake_directory.add_room(10, host_id=1)
    first = await open_socket(token)
    second = await open_socket(token)
    await core.membership.join(first, 10)
    await core.membership.join(second, 10)
    second.websocket.sent.clear()
    first.websocket.sent.clear()

    delivered = await core.relay.relay(first, 2, 10, InboundEvent.ICE_CANDIDATE, {"candidate": "c"})

    assert delivered == 1
    assert first.websocket.sent == []
    assert second.websocket.of_type("ice-candidate")[0]["from"] == 2


async def test_relay_requires_sender_in_room(core, two_rooms, open_socket, fake_directory) -> None:
    sender, target_in_10, *_ = two_rooms

    with pytest.raises(NotInRoom):
        await core.relay.relay(sender, 2, 11, InboundEvent.OFFER, {})
    outsider = await open_socket(fake_directory.add_user(5))
    with pytest.raises(NotInRoom):
        await core.relay.relay(outsider, 2, 10, InboundEvent.OFFER, {})
    with pytest.raises(InvalidPayload):
        await core.relay.relay(sender, 2, 10, InboundEvent.CHAT_MESSAGE, {})
    assert target_in_10.websocket.sent == []


async def test_router_relays_legacy_signal_body(core, two_rooms) -> None:
    sender, target_in_10, *_ = two_rooms

    await core.router.dispatch(sender, {"type": "answer", "to": "2", "answer": {"sdp": "a"}})

    assert target_in_10.websocket.sent == [
        {"type": "answer", "from": 1, "roomId": 10, "payload": {"sdp": "a"}}
    ]


async def test_chat_broadcast_reaches_room_minus_sender(core, two_rooms) -> None:
    sender, target_in_10, target_in_11, bystander = two_rooms

    await core.router.dispatch(sender, {"type": "chat-message", "message": "  hello  "})

    assert sender.websocket.sent == []
    assert target_in_11.websocket.sent == []
    for receiver in (target_in_10, bystander):
        frame = receiver.websocket.sent[-1]
        assert frame["type"] == "chat-message"
        assert frame["message"] == "hello"
        assert frame["user"]["id"] == 1
        assert frame["roomId"] == 10
        assert "timestamp" in frame


async def test_voice_message_payload_is_forwarded_as_is(core, two_rooms) -> None:
    sender, target_in_10, *_ = two_rooms
    clip = {"audio": "base64==", "duration": 3.2}

    await core.router.dispatch(sender, {"type": "voice-message", "message": clip})

    assert target_in_10.websocket.of_type("voice-message")[0]["message"] == clip


async def test_long_chat_message_is_rejected(core, two_rooms) -> None:
    sender, target_in_10, *_ = two_rooms

    await core.router.dispatch(sender, {"type": "chat-message", "message": "x" * 51})

    assert sender.websocket.sent[-1]["code"] == "invalid_payload"
    assert target_in_10.websocket.sent == []


async def test_chat_from_unjoined_connection_is_dropped(core, fake_directory, open_socket) -> None:
    connection = await open_socket(fake_directory.add_user(9))
    connection.websocket.sent.clear()

    await core.router.dispatch(connection, {"type": "chat-message", "message": "hi"})

    assert connection.websocket.sent == []
