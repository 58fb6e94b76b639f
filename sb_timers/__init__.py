"""SB Timers: multi-user time tracking with live updates over WebSocket."""

__version__ = "0.1.0"
