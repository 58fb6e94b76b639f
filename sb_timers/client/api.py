"""Thin ``requests`` wrapper around the REST API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests

DEFAULT_SERVER_URL = "http://localhost:3000"
SESSION_HEADER = "X-Session-Id"


class ApiError(Exception):
    """Non-2xx response from the server."""

    def __init__(self, status_code: int, message: str, code: str | None = None) -> None:
        super().__init__(f"Server error ({status_code}): {message}")
        self.status_code = status_code
        self.message = message
        self.code = code


class TimersApi:
    def __init__(
        self,
        base_url: str = DEFAULT_SERVER_URL,
        token: Optional[str] = None,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def push_url(self) -> str:
        if self.base_url.startswith("https://"):
            return "wss://" + self.base_url[len("https://"):] + "/ws"
        if self.base_url.startswith("http://"):
            return "ws://" + self.base_url[len("http://"):] + "/ws"
        return self.base_url + "/ws"

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers[SESSION_HEADER] = self.token
        return headers

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None, **params: Any) -> Any:
        r = self.session.request(
            method,
            f"{self.base_url}{path}",
            headers=self._headers(),
            json=payload,
            params=params or None,
            timeout=self.timeout,
        )
        if not 200 <= r.status_code < 300:
            try:
                body = r.json()
            except ValueError:
                body = {}
            if isinstance(body, dict):
                message = str(body.get("error") or r.text or r.reason)
                code = body.get("code")
            else:
                message, code = r.text, None
            raise ApiError(r.status_code, message, code)
        if not r.content:
            return None
        return r.json()

    # ---- auth

    def signup(self, username: str, password: str) -> str:
        data = self._request("POST", "/signup", {"username": username, "password": password})
        self.token = data["sessionId"]
        return self.token

    def login(self, username: str, password: str) -> str:
        data = self._request("POST", "/login", {"username": username, "password": password})
        self.token = data["sessionId"]
        return self.token

    def logout(self) -> None:
        self._request("POST", "/logout")
        self.token = None

    # ---- timers

    def list_timers(self, active: bool = False) -> List[Dict[str, Any]]:
        if active:
            return self._request("GET", "/api/timers", active="true")
        return self._request("GET", "/api/timers")

    def start_timer(self, description: str) -> Dict[str, Any]:
        return self._request("POST", "/api/timers", {"description": description})

    def stop_timer(self, timer_id: int | str) -> Dict[str, Any]:
        return self._request("POST", f"/api/timers/{timer_id}/stop")

    def delete_timer(self, timer_id: int | str) -> Dict[str, Any]:
        return self._request("DELETE", f"/api/timers/{timer_id}")
