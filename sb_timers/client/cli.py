#!/usr/bin/env python3
"""
sb-timers command-line client.

Commands:
  signup | login | logout
  start "description"      start a timer
  stop <id>                stop a running timer
  delete <id>              delete a timer
  status                   active timers
  status old               completed timers
  status <id>              one timer
  watch                    live view of active timers (push channel)
  shell                    menu loop over a live local cache

Server URL precedence:
  1) --server <url> (CLI)
  2) env SB_TIMERS_SERVER_URL
  3) http://localhost:3000

Exit codes:
  0 = success
  1 = handled application error
  2 = network/HTTP error
"""

from __future__ import annotations

import argparse
import getpass
import os
import shlex
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, TextIO

import requests

from .api import DEFAULT_SERVER_URL, ApiError, TimersApi
from .listener import PushListener, SnapshotCache
from .session_file import SessionFile

SERVER_URL_ENV = "SB_TIMERS_SERVER_URL"


class CliError(Exception):
    """User-facing error; message is printed and the exit code is 1."""


def format_duration(ms: Optional[int]) -> str:
    seconds = max(int(ms or 0) // 1000, 0)
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def _fmt_ts(ms: Optional[int]) -> str:
    if ms is None:
        return ""
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _short(description: str, width: int = 35) -> str:
    return description if len(description) <= width else description[: width - 3] + "..."


def render_table(title: str, timers: Iterable[Dict[str, Any]], field: str, out: TextIO) -> None:
    timers = list(timers)
    if not timers:
        out.write(f"No {title.lower()}\n")
        return
    out.write(f"{title}:\n")
    out.write("ID".ljust(15) + "Description".ljust(40) + "Duration\n")
    out.write("-" * 70 + "\n")
    for timer in timers:
        out.write(
            str(timer.get("id", "")).ljust(15)
            + _short(str(timer.get("description", ""))).ljust(40)
            + format_duration(timer.get(field))
            + "\n"
        )


def render_timer(timer: Dict[str, Any], out: TextIO) -> None:
    out.write(f"Timer ID: {timer.get('id')}\n")
    out.write(f"Description: {timer.get('description')}\n")
    out.write(f"Status: {'Active' if timer.get('isActive') else 'Completed'}\n")
    out.write(f"Start time: {_fmt_ts(timer.get('start'))}\n")
    if timer.get("end") is not None:
        out.write(f"End time: {_fmt_ts(timer.get('end'))}\n")
        out.write(f"Duration: {format_duration(timer.get('duration'))}\n")
    elif timer.get("isActive"):
        out.write(f"Current duration: {format_duration(timer.get('progress'))}\n")


# ---------------------------
# Commands
# ---------------------------


class Client:
    def __init__(self, api: TimersApi, session_file: SessionFile, out: TextIO = sys.stdout) -> None:
        self.api = api
        self.session_file = session_file
        self.out = out

    def _require_login(self) -> None:
        if not self.api.token:
            raise CliError("Not authenticated. Please login or signup first.")

    def _prompt_credentials(self) -> tuple[str, str]:
        username = input("Username: ").strip()
        password = getpass.getpass("Password: ")
        return username, password

    def signup(self, username: str, password: str) -> None:
        token = self.api.signup(username, password)
        self.session_file.save(token)
        self.out.write("Signed up successfully!\n")

    def login(self, username: str, password: str) -> None:
        token = self.api.login(username, password)
        self.session_file.save(token)
        self.out.write("Logged in successfully!\n")

    def logout(self) -> None:
        if self.api.token:
            self.api.logout()
        self.session_file.delete()
        self.out.write("Logged out successfully!\n")

    def start(self, description: str) -> Dict[str, Any]:
        self._require_login()
        if not description.strip():
            raise CliError('Description is required. Usage: sb-timers start "Your timer description"')
        timer = self.api.start_timer(description)
        self.out.write(f"Timer started with ID: {timer['id']}\n")
        self.out.write(f"Description: {timer['description']}\n")
        return timer

    def stop(self, timer_id: str) -> Dict[str, Any]:
        self._require_login()
        timer = self.api.stop_timer(timer_id)
        self.out.write(f"Timer stopped: {timer['id']}\n")
        self.out.write(f"Duration: {format_duration(timer.get('duration'))}\n")
        return timer

    def delete(self, timer_id: str) -> None:
        self._require_login()
        result = self.api.delete_timer(timer_id)
        self.out.write(f"{result.get('message', 'Timer deleted')}\n")

    def status(self, selector: Optional[str] = None) -> None:
        self._require_login()
        timers = self.api.list_timers()
        self.show(timers, selector)

    def show(self, timers: List[Dict[str, Any]], selector: Optional[str] = None) -> None:
        if selector is None:
            render_table("Active timers", [t for t in timers if t.get("isActive")], "progress", self.out)
        elif selector == "old":
            render_table("Completed timers", [t for t in timers if not t.get("isActive")], "duration", self.out)
        else:
            timer = next((t for t in timers if str(t.get("id")) == selector), None)
            if timer is None:
                raise CliError(f'Timer with ID "{selector}" not found')
            render_timer(timer, self.out)

    # ---- live views

    def _listener(self, cache: SnapshotCache, on_update: Optional[Callable[[str], None]] = None) -> PushListener:
        self._require_login()
        listener = PushListener(self.api.push_url, self.api.token, cache, on_update=on_update)
        listener.start()
        return listener

    def watch(self, stop_event: Optional[threading.Event] = None) -> None:
        cache = SnapshotCache()
        changed = threading.Event()
        listener = self._listener(cache, on_update=lambda _kind: changed.set())
        stop_event = stop_event or threading.Event()
        try:
            while not stop_event.is_set():
                if listener.rejected.is_set():
                    raise CliError("Session rejected by server. Please login again.")
                if changed.wait(timeout=0.5):
                    changed.clear()
                    self.out.write("\033[2J\033[H")
                    render_table("Active timers", cache.active(), "progress", self.out)
                    self.out.flush()
        except KeyboardInterrupt:
            pass
        finally:
            listener.stop()

    def shell(self, read_line: Callable[[str], str] = input) -> None:
        cache = SnapshotCache()
        listener = self._listener(cache)
        self.out.write("Commands: list | old | show <id> | start <description> | stop <id> | delete <id> | quit\n")
        try:
            while True:
                try:
                    line = read_line("timers> ").strip()
                except EOFError:
                    break
                if not line:
                    continue
                try:
                    parts = shlex.split(line)
                except ValueError as exc:
                    self.out.write(f"Error: {exc}\n")
                    continue
                command, args = parts[0].lower(), parts[1:]
                if command in ("quit", "exit"):
                    break
                try:
                    if command == "list":
                        render_table("Active timers", cache.active(), "progress", self.out)
                    elif command == "old":
                        render_table("Completed timers", cache.completed(), "duration", self.out)
                    elif command == "show" and args:
                        timer = cache.find(args[0])
                        if timer is None:
                            raise CliError(f'Timer with ID "{args[0]}" not found')
                        render_timer(timer, self.out)
                    elif command == "start":
                        self.start(" ".join(args))
                    elif command == "stop" and args:
                        self.stop(args[0])
                    elif command == "delete" and args:
                        self.delete(args[0])
                    else:
                        self.out.write(f"Unknown command: {line}\n")
                except (CliError, ApiError) as exc:
                    self.out.write(f"Error: {exc}\n")
        finally:
            listener.stop()


# ---------------------------
# Entry point
# ---------------------------


def resolve_server_url(cli_value: Optional[str]) -> str:
    if cli_value:
        return cli_value
    return os.getenv(SERVER_URL_ENV) or DEFAULT_SERVER_URL


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="sb-timers", description="Track time with named timers.")
    p.add_argument("--server", default=None,
                   help=f"Server base URL (default: ${SERVER_URL_ENV} or {DEFAULT_SERVER_URL})")
    p.add_argument("--session-file", type=Path, default=None,
                   help="Where the session token is stored (default: ~/.sb-timers-session)")
    p.add_argument("--timeout", type=float, default=15.0,
                   help="HTTP timeout in seconds (default: 15)")
    sub = p.add_subparsers(dest="command", required=True)
    sub.add_parser("signup", help="Register a new user")
    sub.add_parser("login", help="Login with existing user")
    sub.add_parser("logout", help="Logout current user")
    start = sub.add_parser("start", help="Start a new timer")
    start.add_argument("description", nargs="+")
    stop = sub.add_parser("stop", help="Stop a timer by ID")
    stop.add_argument("timer_id")
    delete = sub.add_parser("delete", help="Delete a timer by ID")
    delete.add_argument("timer_id")
    status = sub.add_parser("status", help="Show timers: active, 'old' for completed, or an ID")
    status.add_argument("selector", nargs="?", default=None)
    sub.add_parser("watch", help="Live view of active timers")
    sub.add_parser("shell", help="Interactive menu with live updates")
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    session_file = SessionFile(args.session_file)
    api = TimersApi(resolve_server_url(args.server), token=session_file.read(), timeout=args.timeout)
    client = Client(api, session_file)

    try:
        if args.command == "signup":
            client.signup(*client._prompt_credentials())
        elif args.command == "login":
            client.login(*client._prompt_credentials())
        elif args.command == "logout":
            client.logout()
        elif args.command == "start":
            client.start(" ".join(args.description))
        elif args.command == "stop":
            client.stop(args.timer_id)
        elif args.command == "delete":
            client.delete(args.timer_id)
        elif args.command == "status":
            client.status(args.selector)
        elif args.command == "watch":
            client.watch()
        elif args.command == "shell":
            client.shell()
        return 0
    except requests.exceptions.RequestException as e:
        print(f"NETWORK_ERROR: {e}", file=sys.stderr)
        return 2
    except (ApiError, CliError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
