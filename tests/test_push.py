"""Tests for the WebSocket push channel."""

import os
import sys
from datetime import timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, update
from sqlalchemy.pool import StaticPool
from starlette.websockets import WebSocketDisconnect

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATA_DIR", str(ROOT / "data"))

from sb_timers.core.config import AppSettings
from sb_timers.db.session import build_session_factory, create_tables
from sb_timers.main import create_app
from sb_timers.models.session import UserSession
from sb_timers.routers.push import CLOSE_AUTH_FAILED, CLOSE_AUTH_TIMEOUT
from sb_timers.services.timecalc import utcnow


def _make_client(**overrides):
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    create_tables(engine)
    factory = build_session_factory(engine)
    values = dict(
        DB_URL="sqlite://",
        METRICS_ENABLED=False,
        BROADCAST_INTERVAL_SECONDS=3600,
        SESSION_SWEEP_INTERVAL_SECONDS=3600,
    )
    values.update(overrides)
    app = create_app(AppSettings(**values), factory, engine=engine, configure_logs=False)
    return TestClient(app), factory


@pytest.fixture()
def client_and_factory():
    client, factory = _make_client()
    with client:
        yield client, factory


@pytest.fixture()
def client(client_and_factory):
    return client_and_factory[0]


def _signup(client, username):
    r = client.post("/signup", json={"username": username, "password": "pw"})
    assert r.status_code == 200, r.text
    client.cookies.clear()
    return r.json()["sessionId"]


def _auth(token):
    return {"X-Session-Id": token}


def _receive_until(ws, kind, limit=50):
    # Ticks may interleave with other pushes; skip ahead to the wanted kind.
    for _ in range(limit):
        message = ws.receive_json()
        if message["type"] == kind:
            return message
    raise AssertionError(f"no {kind} message received")


def test_auth_receives_full_snapshot(client):
    token = _signup(client, "pusher")
    client.post("/api/timers", json={"description": "already running"}, headers=_auth(token))

    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "auth", "sessionId": token})
        message = ws.receive_json()
        assert message["type"] == "all_timers"
        assert [t["description"] for t in message["payload"]] == ["already running"]
        assert message["payload"][0]["isActive"] is True


@pytest.mark.parametrize(
    "message",
    [
        {"type": "auth", "sessionId": "not-a-session"},
        {"type": "auth", "sessionId": ""},
        {"type": "auth"},
    ],
)
def test_bad_token_closes_connection(client, message):
    with client.websocket_connect("/ws") as ws:
        ws.send_json(message)
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()
    assert exc.value.code == CLOSE_AUTH_FAILED


def test_expired_token_closes_connection(client_and_factory):
    client, factory = client_and_factory
    token = _signup(client, "stale_pusher")
    with factory() as db:
        db.execute(
            update(UserSession)
            .where(UserSession.session_id == token)
            .values(expires_at=utcnow() - timedelta(seconds=1))
        )
        db.commit()

    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "auth", "sessionId": token})
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()
    assert exc.value.code == CLOSE_AUTH_FAILED


def test_write_broadcasts_to_every_connection_of_the_user(client):
    token = _signup(client, "two_tabs")
    other = _signup(client, "bystander")

    with client.websocket_connect("/ws") as first, client.websocket_connect("/ws") as second:
        for ws in (first, second):
            ws.send_json({"type": "auth", "sessionId": token})
            assert ws.receive_json()["payload"] == []

        created = client.post("/api/timers", json={"description": "shared"}, headers=_auth(token)).json()
        for ws in (first, second):
            message = ws.receive_json()
            assert message["type"] == "all_timers"
            assert [t["id"] for t in message["payload"]] == [created["id"]]

        # Another user's writes are not pushed here.
        client.post("/api/timers", json={"description": "elsewhere"}, headers=_auth(other))
        client.post(f"/api/timers/{created['id']}/stop", headers=_auth(token))
        for ws in (first, second):
            message = ws.receive_json()
            assert message["type"] == "all_timers"
            assert message["payload"][0]["isActive"] is False
            assert message["payload"][0]["description"] == "shared"


def test_unknown_and_malformed_messages_are_ignored(client):
    token = _signup(client, "noisy")
    with client.websocket_connect("/ws") as ws:
        ws.send_text("this is not json")
        ws.send_json(["not", "an", "object"])
        ws.send_json({"type": "ping"})
        ws.send_json({"type": "auth", "sessionId": token})
        assert ws.receive_json()["type"] == "all_timers"

        ws.send_json({"type": "subscribe"})
        client.post("/api/timers", json={"description": "still open"}, headers=_auth(token))
        message = ws.receive_json()
        assert message["type"] == "all_timers"
        assert len(message["payload"]) == 1


def test_tick_sends_active_timers_only():
    client, _ = _make_client(BROADCAST_INTERVAL_SECONDS=0.05)
    with client:
        token = _signup(client, "ticker")
        done = client.post("/api/timers", json={"description": "done"}, headers=_auth(token)).json()
        client.post(f"/api/timers/{done['id']}/stop", headers=_auth(token))
        running = client.post("/api/timers", json={"description": "running"}, headers=_auth(token)).json()

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "auth", "sessionId": token})
            _receive_until(ws, "all_timers")

            progress = []
            for _ in range(2):
                message = _receive_until(ws, "active_timers")
                assert [t["id"] for t in message["payload"]] == [running["id"]]
                progress.append(message["payload"][0]["progress"])
            assert progress[1] >= progress[0]


def test_health_counts_bound_connections(client):
    token = _signup(client, "counted")
    assert client.get("/health").json()["connections"] == 0
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "auth", "sessionId": token})
        ws.receive_json()
        # A delivered broadcast proves the connection is registered.
        client.post("/api/timers", json={"description": "x"}, headers=_auth(token))
        assert ws.receive_json()["type"] == "all_timers"
        assert client.get("/health").json()["connections"] == 1


def test_binary_frames_are_read_or_ignored(client):
    token = _signup(client, "binary")
    with client.websocket_connect("/ws") as ws:
        ws.send_bytes(b'{"type": "auth", "sessionId": "' + token.encode() + b'"}')
        assert ws.receive_json()["type"] == "all_timers"

        ws.send_bytes(b'{"type":"ping"}')
        ws.send_bytes(b"\xff\xfe not utf-8")
        client.post("/api/timers", json={"description": "after bytes"}, headers=_auth(token))
        message = ws.receive_json()
        assert message["type"] == "all_timers"
        assert [t["description"] for t in message["payload"]] == ["after bytes"]
        assert client.get("/health").json()["connections"] == 1


def test_unauthenticated_connection_times_out():
    client, _ = _make_client(PUSH_AUTH_TIMEOUT_SECONDS=0.1)
    with client:
        with client.websocket_connect("/ws") as ws:
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_json()
        assert exc.value.code == CLOSE_AUTH_TIMEOUT


def test_tick_reaches_every_connection_of_the_user():
    client, _ = _make_client(BROADCAST_INTERVAL_SECONDS=0.05)
    with client:
        token = _signup(client, "two_ticks")
        running = client.post("/api/timers", json={"description": "running"}, headers=_auth(token)).json()

        with client.websocket_connect("/ws") as first, client.websocket_connect("/ws") as second:
            for ws in (first, second):
                ws.send_json({"type": "auth", "sessionId": token})
                _receive_until(ws, "all_timers")

            for ws in (first, second):
                message = _receive_until(ws, "active_timers")
                assert [t["id"] for t in message["payload"]] == [running["id"]]


def test_second_auth_rebinds_connection(client):
    alice = _signup(client, "rebind_a")
    bob = _signup(client, "rebind_b")
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "auth", "sessionId": alice})
        assert ws.receive_json()["type"] == "all_timers"

        ws.send_json({"type": "auth", "sessionId": bob})
        assert ws.receive_json()["payload"] == []

        # Alice's write is no longer pushed here; Bob's is.
        client.post("/api/timers", json={"description": "alice's"}, headers=_auth(alice))
        client.post("/api/timers", json={"description": "bob's"}, headers=_auth(bob))
        message = ws.receive_json()
        assert [t["description"] for t in message["payload"]] == ["bob's"]
        assert client.get("/health").json()["connections"] == 1
