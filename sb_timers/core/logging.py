"""Log line formatting for the server.

Every record carries the correlation fields set by the middlewares (request id
and, once a session resolves, the principal). Structured fields are passed
through ``extra={"extra_data": {...}}`` and flattened into the JSON line.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from ..middlewares import principal_ctx_var, request_id_ctx_var

NOISY_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def _context_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    request_id = request_id_ctx_var.get()
    if request_id:
        fields["request_id"] = request_id
    principal = principal_ctx_var.get()
    if principal:
        fields["principal"] = principal
    extra = getattr(record, "extra_data", None)
    if isinstance(extra, Mapping):
        fields.update(extra)
    return fields


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line."""

    def __init__(self, service: str | None = None) -> None:
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.service:
            payload["service"] = self.service
        payload.update(_context_fields(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), default=str)


class TextLogFormatter(logging.Formatter):
    """Human-readable variant for local development (``LOG_FORMAT=text``)."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = _context_fields(record)
        if fields:
            line += " " + " ".join(f"{key}={value}" for key, value in fields.items())
        return line


def configure_logging(level: str | int = logging.INFO, fmt: str = "json", service: str | None = None) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(TextLogFormatter() if fmt == "text" else JsonLogFormatter(service))
    logging.root.handlers = [handler]
    logging.root.setLevel(level.upper() if isinstance(level, str) else level)
    # uvicorn installs its own handlers; route them through ours instead.
    for name in NOISY_LOGGERS:
        uv_logger = logging.getLogger(name)
        uv_logger.handlers = []
        uv_logger.propagate = True
