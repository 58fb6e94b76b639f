from __future__ import annotations

import os
import platform
from pathlib import Path


def default_session_path() -> Path:
    prefix = "_" if platform.system().lower().startswith("windows") else "."
    return Path.home() / f"{prefix}sb-timers-session"


class SessionFile:
    """Plaintext file holding the current session token."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = Path(path) if path is not None else default_session_path()

    def read(self) -> str | None:
        try:
            token = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        return token or None

    def save(self, token: str) -> None:
        self.path.write_text(token, encoding="utf-8")
        try:
            os.chmod(self.path, 0o600)
        except OSError:
            # Not supported everywhere (e.g. some Windows filesystems).
            pass

    def delete(self) -> bool:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        return True
