"""Background push listener and the local snapshot cache it feeds."""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import connect

logger = logging.getLogger(__name__)

ALL_TIMERS = "all_timers"
ACTIVE_TIMERS = "active_timers"
AUTH_REJECTED_CODE = 4401


class SnapshotCache:
    """Last-seen view of the user's timers.

    Every snapshot replaces state wholesale: ``all_timers`` replaces
    everything, ``active_timers`` replaces the running timers. Individual
    timers are never merged.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: List[Dict[str, Any]] = []
        self._completed: List[Dict[str, Any]] = []
        self.version = 0
        self.updated_at: Optional[float] = None

    def apply(self, kind: str, payload: Any) -> bool:
        if not isinstance(payload, list):
            return False
        timers = [t for t in payload if isinstance(t, dict)]
        with self._lock:
            if kind == ALL_TIMERS:
                self._active = [t for t in timers if t.get("isActive")]
                self._completed = [t for t in timers if not t.get("isActive")]
            elif kind == ACTIVE_TIMERS:
                self._active = [t for t in timers if t.get("isActive")]
            else:
                return False
            self.version += 1
            self.updated_at = time.time()
        return True

    def active(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._active)

    def completed(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._completed)

    def find(self, timer_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            for timer in self._active + self._completed:
                if str(timer.get("id")) == str(timer_id):
                    return dict(timer)
        return None


class PushListener(threading.Thread):
    """Keeps a push connection open, re-authenticating after every reconnect."""

    def __init__(
        self,
        url: str,
        token: str,
        cache: SnapshotCache,
        on_update: Optional[Callable[[str], None]] = None,
        reconnect_delay: float = 2.0,
        open_timeout: float = 10.0,
    ) -> None:
        super().__init__(name="sb-timers-push", daemon=True)
        self.url = url
        self.token = token
        self.cache = cache
        self.on_update = on_update
        self.reconnect_delay = reconnect_delay
        self.open_timeout = open_timeout
        self.rejected = threading.Event()
        self._stop_event = threading.Event()
        self._ws = None

    def handle_message(self, raw: str | bytes) -> Optional[str]:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug("ignoring malformed push message")
            return None
        if not isinstance(message, dict):
            return None
        kind = message.get("type")
        if not isinstance(kind, str) or not self.cache.apply(kind, message.get("payload")):
            return None
        if self.on_update:
            self.on_update(kind)
        return kind

    def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                with connect(self.url, open_timeout=self.open_timeout) as ws:
                    self._ws = ws
                    ws.send(json.dumps({"type": "auth", "sessionId": self.token}))
                    try:
                        for raw in ws:
                            self.handle_message(raw)
                    except ConnectionClosed:
                        pass
                    if ws.close_code == AUTH_REJECTED_CODE:
                        self.rejected.set()
                        return
            except (OSError, WebSocketException) as exc:
                logger.debug("push connection failed: %s", exc)
            finally:
                self._ws = None
            self._stop_event.wait(self.reconnect_delay)

    def stop(self) -> None:
        self._stop_event.set()
        ws = self._ws
        if ws is not None:
            ws.close()
