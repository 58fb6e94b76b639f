"""Push notifier: live WebSocket connections bound to users, and the broadcasts sent to them.

Two triggers feed connected clients:

* a periodic tick (``BROADCAST_INTERVAL_SECONDS``) sending each bound
  connection an ``active_timers`` snapshot of its owner's running timers;
* a write (create/stop/delete) sending an ``all_timers`` snapshot to every
  connection of the acting user.

Snapshots are complete replacements, never deltas, so the two streams need no
ordering between them.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Union

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.websockets import WebSocket, WebSocketState

from ..crud.sessions import DEFAULT_TTL, resolve_session
from ..crud.timers import list_timers
from ..schemas.timer import TimerOut

logger = logging.getLogger(__name__)

ALL_TIMERS = "all_timers"
ACTIVE_TIMERS = "active_timers"

# Sent when the server gives up on a connection; the client should reconnect.
CLOSE_TRY_AGAIN = 1013


# ============================================================
# HANDSHAKE RESULT
# ============================================================


@dataclass(frozen=True)
class Authenticated:
    user_id: int
    username: str


@dataclass(frozen=True)
class Rejected:
    reason: str


HandshakeResult = Union[Authenticated, Rejected]


# ============================================================
# CONNECTION REGISTRY
# ============================================================


@dataclass
class BoundConnection:
    connection_id: str
    user_id: int
    websocket: WebSocket

    @property
    def is_open(self) -> bool:
        ws = self.websocket
        return (
            ws.client_state == WebSocketState.CONNECTED
            and ws.application_state == WebSocketState.CONNECTED
        )


class ConnectionRegistry:
    """Live connections keyed by connection id, indexed by owning user."""

    def __init__(self) -> None:
        self._connections: dict[str, BoundConnection] = {}

    @staticmethod
    def new_connection_id() -> str:
        return f"conn_{uuid.uuid4().hex[:12]}"

    def register(self, connection_id: str, user_id: int, websocket: WebSocket) -> BoundConnection:
        """Bind a connection to a user, replacing any earlier binding."""
        bound = BoundConnection(connection_id=connection_id, user_id=user_id, websocket=websocket)
        self._connections[connection_id] = bound
        return bound

    def unregister(self, connection_id: str) -> BoundConnection | None:
        return self._connections.pop(connection_id, None)

    def get(self, connection_id: str) -> BoundConnection | None:
        return self._connections.get(connection_id)

    def connections_for(self, user_id: int) -> list[BoundConnection]:
        return [c for c in self._connections.values() if c.user_id == user_id]

    def bound_users(self) -> set[int]:
        return {c.user_id for c in self._connections.values()}

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections


# ============================================================
# NOTIFIER
# ============================================================


class PushNotifier:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        registry: ConnectionRegistry | None = None,
        *,
        session_ttl: timedelta = DEFAULT_TTL,
        send_timeout: float = 5.0,
    ) -> None:
        self.session_factory = session_factory
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.session_ttl = session_ttl
        self.send_timeout = send_timeout

    # ---- database access (sync, run in the threadpool)

    def _resolve_token(self, token: str) -> HandshakeResult:
        with self.session_factory() as db:
            resolved = resolve_session(db, token, self.session_ttl)
        if resolved is None:
            return Rejected("invalid or expired session")
        _, user = resolved
        return Authenticated(user_id=user.id, username=user.username)

    def _load_snapshot(self, user_id: int, only_active: bool) -> list[dict[str, Any]]:
        with self.session_factory() as db:
            timers = list_timers(db, user_id, only_active=only_active)
            return [TimerOut.from_timer(t).to_wire() for t in timers]

    async def load_snapshot(self, user_id: int, only_active: bool = False) -> list[dict[str, Any]]:
        return await run_in_threadpool(self._load_snapshot, user_id, only_active)

    # ---- handshake

    async def authenticate(self, message: Any) -> HandshakeResult:
        """Validate an ``{"type": "auth", "sessionId": ...}`` message."""
        if not isinstance(message, dict) or message.get("type") != "auth":
            return Rejected("expected auth message")
        token = message.get("sessionId")
        if not isinstance(token, str) or not token:
            return Rejected("missing session id")
        return await run_in_threadpool(self._resolve_token, token)

    async def bind(self, connection_id: str, websocket: WebSocket, result: Authenticated) -> bool:
        """Start receiving broadcasts, then send the initial full snapshot.

        Registering first means a write that commits while the snapshot loads
        still reaches this connection. The client may see two full snapshots;
        each replaces the last.
        """
        bound = self.registry.register(connection_id, result.user_id, websocket)
        payload = await self.load_snapshot(result.user_id)
        if not await self._send(bound, {"type": ALL_TIMERS, "payload": payload}):
            await self._abandon(bound)
            return False
        logger.info(
            "push.bound",
            extra={"extra_data": {"connection_id": connection_id, "user_id": result.user_id}},
        )
        return True

    def unbind(self, connection_id: str) -> None:
        if self.registry.unregister(connection_id) is not None:
            logger.info("push.unbound", extra={"extra_data": {"connection_id": connection_id}})

    # ---- sending

    async def _send(self, connection: BoundConnection, message: dict[str, Any]) -> bool:
        if not connection.is_open:
            return False
        try:
            await asyncio.wait_for(connection.websocket.send_json(message), timeout=self.send_timeout)
        except Exception as exc:
            logger.debug(
                "push.send_failed",
                extra={"extra_data": {"connection_id": connection.connection_id, "error": repr(exc)}},
            )
            return False
        return True

    async def _abandon(self, connection: BoundConnection) -> None:
        """Drop a connection after a failed send and close its socket.

        Closing lets the client notice and reconnect; a socket left open would
        never be bound again.
        """
        self.registry.unregister(connection.connection_id)
        if not connection.is_open:
            return
        try:
            await asyncio.wait_for(
                connection.websocket.close(code=CLOSE_TRY_AGAIN, reason="Send failed"),
                timeout=self.send_timeout,
            )
        except Exception as exc:
            logger.debug(
                "push.close_failed",
                extra={"extra_data": {"connection_id": connection.connection_id, "error": repr(exc)}},
            )

    async def _send_many(self, connections: list[BoundConnection], message: dict[str, Any]) -> int:
        if not connections:
            return 0
        results = await asyncio.gather(*(self._send(c, message) for c in connections))
        failed = [c for c, ok in zip(connections, results) if not ok]
        if failed:
            await asyncio.gather(*(self._abandon(c) for c in failed))
        return len(connections) - len(failed)

    async def broadcast_all_timers(self, user_id: int) -> int:
        """Full snapshot to every connection of ``user_id``. Never raises."""
        connections = self.registry.connections_for(user_id)
        if not connections:
            return 0
        try:
            payload = await self.load_snapshot(user_id)
            return await self._send_many(connections, {"type": ALL_TIMERS, "payload": payload})
        except Exception:
            logger.exception("push.broadcast_failed", extra={"extra_data": {"user_id": user_id}})
            return 0

    async def _tick_user(self, user_id: int) -> int:
        connections = [c for c in self.registry.connections_for(user_id) if c.is_open]
        if not connections:
            return 0
        payload = await self.load_snapshot(user_id, only_active=True)
        return await self._send_many(connections, {"type": ACTIVE_TIMERS, "payload": payload})

    async def broadcast_active_timers(self) -> int:
        """One tick: active-only snapshot to every bound, open connection.

        Users are served concurrently, so one slow socket or one failed load
        only affects its own user.
        """
        user_ids = list(self.registry.bound_users())
        results = await asyncio.gather(*(self._tick_user(u) for u in user_ids), return_exceptions=True)
        sent = 0
        for user_id, result in zip(user_ids, results):
            if isinstance(result, BaseException):
                logger.error(
                    "push.tick_failed",
                    exc_info=result,
                    extra={"extra_data": {"user_id": user_id}},
                )
                continue
            sent += result
        return sent

    async def run_ticker(self, interval: float) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + interval
        while True:
            await asyncio.sleep(max(next_tick - loop.time(), 0))
            next_tick += interval
            try:
                await self.broadcast_active_timers()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("push.tick_failed")
            # A tick that overran skips the missed slots instead of bursting.
            now = loop.time()
            if next_tick < now:
                next_tick = now + interval
