"""WebSocket push channel.

Protocol::

    client -> server  {"type": "auth", "sessionId": "<token>"}
    server -> client  {"type": "all_timers",    "payload": [Timer, ...]}
    server -> client  {"type": "active_timers", "payload": [Timer, ...]}

A failed handshake closes the socket. Connections that never authenticate are
closed after ``PUSH_AUTH_TIMEOUT_SECONDS``. Malformed and unknown messages are
logged and ignored.
"""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..services.notifier import PushNotifier, Rejected

logger = logging.getLogger(__name__)

router = APIRouter()

CLOSE_AUTH_FAILED = 4401
CLOSE_AUTH_TIMEOUT = 4408


def _parse(raw: str | None, connection_id: str) -> dict | None:
    data = None
    if raw is not None:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            data = None
    if not isinstance(data, dict):
        logger.warning("push.malformed_message", extra={"extra_data": {"connection_id": connection_id}})
        return None
    return data


async def _receive_text(websocket: WebSocket) -> str | None:
    """Next frame as text. Binary frames are decoded as UTF-8; ``None`` if that fails."""
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
    text = message.get("text")
    if text is not None:
        return text
    data = message.get("bytes")
    if data is None:
        return None
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None


@router.websocket("/ws")
async def push_channel(websocket: WebSocket):
    notifier: PushNotifier = websocket.app.state.notifier
    settings = websocket.app.state.settings
    connection_id = notifier.registry.new_connection_id()
    authenticated = False

    await websocket.accept()
    try:
        while True:
            if authenticated:
                raw = await _receive_text(websocket)
            else:
                try:
                    raw = await asyncio.wait_for(
                        _receive_text(websocket), timeout=settings.PUSH_AUTH_TIMEOUT_SECONDS
                    )
                except TimeoutError:
                    await websocket.close(code=CLOSE_AUTH_TIMEOUT, reason="Authentication timeout")
                    return

            data = _parse(raw, connection_id)
            if data is None:
                continue

            if data.get("type") != "auth":
                logger.info(
                    "push.ignored_message",
                    extra={"extra_data": {"connection_id": connection_id, "type": str(data.get("type"))}},
                )
                continue

            result = await notifier.authenticate(data)
            if isinstance(result, Rejected):
                logger.info(
                    "push.rejected",
                    extra={"extra_data": {"connection_id": connection_id, "reason": result.reason}},
                )
                notifier.unbind(connection_id)
                await websocket.close(code=CLOSE_AUTH_FAILED, reason="Authentication failed")
                return

            authenticated = await notifier.bind(connection_id, websocket, result)
            if not authenticated:
                return
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("push.connection_error", extra={"extra_data": {"connection_id": connection_id}})
    finally:
        notifier.unbind(connection_id)
