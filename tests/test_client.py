"""Tests for the command-line client pieces that do not need a live server."""

import io
import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sb_timers.client.api import ApiError, TimersApi
from sb_timers.client.cli import CliError, Client, format_duration, parse_args, resolve_server_url
from sb_timers.client.listener import PushListener, SnapshotCache
from sb_timers.client.session_file import SessionFile


class FakeResponse:
    def __init__(self, status_code, body=None, text=None):
        self.status_code = status_code
        self._body = body
        self.text = text if text is not None else (json.dumps(body) if body is not None else "")
        self.content = self.text.encode()
        self.reason = "Reason"

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


class FakeHttp:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self.responses.pop(0)


ACTIVE = {"id": 7, "description": "running", "start": 1_000, "isActive": True, "progress": 65_000}
DONE = {"id": 3, "description": "done", "start": 1_000, "isActive": False, "end": 3_661_000 + 1_000, "duration": 3_661_000}


@pytest.mark.parametrize(
    "ms,expected",
    [(None, "0s"), (999, "0s"), (59_999, "59s"), (65_000, "1m 5s"), (3_661_000, "1h 1m 1s"), (-5, "0s")],
)
def test_format_duration(ms, expected):
    assert format_duration(ms) == expected


def test_cache_all_timers_replaces_everything():
    cache = SnapshotCache()
    assert cache.apply("all_timers", [ACTIVE, DONE])
    assert [t["id"] for t in cache.active()] == [7]
    assert [t["id"] for t in cache.completed()] == [3]

    assert cache.apply("all_timers", [])
    assert cache.active() == []
    assert cache.completed() == []
    assert cache.version == 2


def test_cache_active_timers_keeps_completed():
    cache = SnapshotCache()
    cache.apply("all_timers", [ACTIVE, DONE])
    later = dict(ACTIVE, progress=70_000)
    cache.apply("active_timers", [later])
    assert cache.active()[0]["progress"] == 70_000
    assert [t["id"] for t in cache.completed()] == [3]
    assert cache.find("3")["description"] == "done"
    assert cache.find(99) is None


def test_cache_ignores_unknown_kinds_and_bad_payloads():
    cache = SnapshotCache()
    assert cache.apply("something_else", []) is False
    assert cache.apply("all_timers", {"not": "a list"}) is False
    assert cache.version == 0


def test_listener_handle_message():
    cache = SnapshotCache()
    seen = []
    listener = PushListener("ws://unused/ws", "tok", cache, on_update=seen.append)

    assert listener.handle_message("not json") is None
    assert listener.handle_message(json.dumps([1, 2])) is None
    assert listener.handle_message(json.dumps({"type": "pong"})) is None
    assert listener.handle_message(json.dumps({"type": "all_timers", "payload": [ACTIVE]})) == "all_timers"
    assert seen == ["all_timers"]
    assert cache.active()[0]["id"] == 7


def test_session_file_round_trip(tmp_path):
    store = SessionFile(tmp_path / "session")
    assert store.read() is None
    store.save("abc123")
    assert store.read() == "abc123"
    assert store.delete() is True
    assert store.delete() is False
    assert store.read() is None


def test_api_sends_session_header_and_parses_body():
    http = FakeHttp(FakeResponse(200, [ACTIVE]))
    api = TimersApi("http://example.test/", token="tok", session=http)
    assert api.list_timers(active=True) == [ACTIVE]

    method, url, kwargs = http.calls[0]
    assert method == "GET"
    assert url == "http://example.test/api/timers"
    assert kwargs["headers"]["X-Session-Id"] == "tok"
    assert kwargs["params"] == {"active": "true"}


def test_api_login_stores_token():
    http = FakeHttp(FakeResponse(200, {"sessionId": "new-token"}))
    api = TimersApi("http://example.test", session=http)
    assert api.login("ada", "pw") == "new-token"
    assert api.token == "new-token"
    assert "X-Session-Id" not in http.calls[0][2]["headers"]


def test_api_error_uses_server_message():
    http = FakeHttp(FakeResponse(404, {"error": "Timer not found or already stopped", "code": "not_found"}))
    api = TimersApi("http://example.test", token="tok", session=http)
    with pytest.raises(ApiError) as exc:
        api.stop_timer(5)
    assert exc.value.status_code == 404
    assert exc.value.code == "not_found"
    assert exc.value.message == "Timer not found or already stopped"


def test_api_error_without_json_body():
    http = FakeHttp(FakeResponse(502, None, text="Bad gateway"))
    api = TimersApi("http://example.test", token="tok", session=http)
    with pytest.raises(ApiError) as exc:
        api.delete_timer(1)
    assert exc.value.message == "Bad gateway"


@pytest.mark.parametrize(
    "base,expected",
    [
        ("http://localhost:3000", "ws://localhost:3000/ws"),
        ("https://timers.example.com/", "wss://timers.example.com/ws"),
    ],
)
def test_push_url(base, expected):
    assert TimersApi(base).push_url == expected


def _client(tmp_path, token="tok", *responses):
    out = io.StringIO()
    api = TimersApi("http://example.test", token=token, session=FakeHttp(*responses))
    return Client(api, SessionFile(tmp_path / "session"), out=out), out


def test_status_shows_active_table(tmp_path):
    client, out = _client(tmp_path, "tok", FakeResponse(200, [ACTIVE, DONE]))
    client.status()
    text = out.getvalue()
    assert "Active timers:" in text
    assert "running" in text
    assert "1m 5s" in text
    assert "done" not in text


def test_show_completed_and_single(tmp_path):
    client, out = _client(tmp_path)
    client.show([ACTIVE, DONE], "old")
    assert "Completed timers:" in out.getvalue()
    assert "1h 1m 1s" in out.getvalue()

    out.truncate(0)
    out.seek(0)
    client.show([ACTIVE, DONE], "7")
    assert "Status: Active" in out.getvalue()
    assert "Current duration: 1m 5s" in out.getvalue()

    with pytest.raises(CliError):
        client.show([ACTIVE], "42")


def test_show_empty_lists(tmp_path):
    client, out = _client(tmp_path)
    client.show([])
    assert out.getvalue() == "No active timers\n"


def test_commands_require_login(tmp_path):
    client, _ = _client(tmp_path, None)
    with pytest.raises(CliError):
        client.start("anything")
    with pytest.raises(CliError):
        client.status()


def test_login_persists_and_logout_clears_token(tmp_path):
    client, out = _client(tmp_path, None, FakeResponse(200, {"sessionId": "s1"}), FakeResponse(200, {}))
    client.login("ada", "pw")
    assert client.session_file.read() == "s1"
    client.logout()
    assert client.session_file.read() is None
    assert client.api.token is None
    assert "Logged out" in out.getvalue()


def test_start_rejects_blank_description(tmp_path):
    client, _ = _client(tmp_path)
    with pytest.raises(CliError):
        client.start("   ")


def test_server_url_precedence(monkeypatch):
    monkeypatch.setenv("SB_TIMERS_SERVER_URL", "http://from-env:1234")
    assert resolve_server_url("http://cli:1") == "http://cli:1"
    assert resolve_server_url(None) == "http://from-env:1234"
    monkeypatch.delenv("SB_TIMERS_SERVER_URL")
    assert resolve_server_url(None) == "http://localhost:3000"


def test_parse_args_joins_start_description():
    args = parse_args(["start", "write", "the", "docs"])
    assert args.command == "start"
    assert " ".join(args.description) == "write the docs"
    assert parse_args(["status", "old"]).selector == "old"
