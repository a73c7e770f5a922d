"""WebSocket endpoint for the shared theater rooms."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Dict, TypeVar

from fastapi import APIRouter, WebSocket
from fastapi.websockets import WebSocketDisconnect, WebSocketState

from app.config import get_settings
from cinesync.realtime.connection import Connection, safe_send_json
from cinesync.realtime.errors import InvalidPayload
from cinesync.realtime.router import send_error
from cinesync.realtime.service import get_theater_core

router = APIRouter(prefix="/ws", tags=["ws"])

settings = get_settings()

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Replies to server keepalive pings; consumed here and never routed.
KEEPALIVE_REPLY = "pong"


async def iter_keepalive_messages(
    websocket: WebSocket,
    receiver: Callable[[], Awaitable[T]],
    *,
    timeout_seconds: float | int | None,
    ping_interval_seconds: float | int | None,
    ping_payload: Dict[str, Any] | None = None,
) -> AsyncIterator[T]:
    """Yield messages from *receiver* while sending keepalive pings when idle."""

    ping_payload = ping_payload or {"type": "ping"}
    timeout = float(timeout_seconds) if timeout_seconds else 0.0
    interval = float(ping_interval_seconds) if ping_interval_seconds else 0.0
    last_activity = time.monotonic()
    last_ping_sent: float | None = None

    while True:
        try:
            if timeout > 0:
                message = await asyncio.wait_for(receiver(), timeout=timeout)
            else:
                message = await receiver()
        except asyncio.TimeoutError:
            if websocket.application_state != WebSocketState.CONNECTED:
                break

            now = time.monotonic()
            should_ping = interval <= 0 or (
                now - last_activity >= interval
                and (last_ping_sent is None or now - last_ping_sent >= interval)
            )
            if should_ping:
                if not await safe_send_json(websocket, ping_payload):
                    break
                last_ping_sent = now
            continue
        except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
            raise
        except (RuntimeError, WebSocketDisconnect):
            break
        else:
            last_activity = time.monotonic()
            last_ping_sent = None
            yield message


def _initial_token(websocket: WebSocket) -> str | None:
    token = websocket.query_params.get("token")
    if not token:
        auth_header = websocket.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ").strip()
    return token or None


async def _handle_frame(connection: Connection, raw_message: str) -> None:
    try:
        payload = json.loads(raw_message)
    except json.JSONDecodeError:
        await send_error(connection, InvalidPayload("Invalid message format"))
        return
    if isinstance(payload, dict) and payload.get("type") == KEEPALIVE_REPLY:
        return
    await get_theater_core().router.dispatch(connection, payload)


@router.websocket("/theater")
async def websocket_theater(websocket: WebSocket) -> None:
    """Single socket per browser tab carrying auth, room, playback and signaling frames.

    Authentication may happen on connect (``?token=`` or a bearer header) or
    later with an ``authenticate`` frame.
    """

    core = get_theater_core()
    await websocket.accept()
    connection = await core.open_connection(websocket)
    try:
        token = _initial_token(websocket)
        if token:
            await core.router.authenticate(connection, token)

        async for raw_message in iter_keepalive_messages(
            websocket,
            websocket.receive_text,
            timeout_seconds=settings.websocket_keepalive_timeout_seconds,
            ping_interval_seconds=settings.websocket_keepalive_ping_interval_seconds,
        ):
            await _handle_frame(connection, raw_message)
    finally:
        await core.close_connection(connection)
        logger.debug("Theater connection %s closed", connection.describe())
