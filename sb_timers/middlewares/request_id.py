from __future__ import annotations

import logging
import time
from contextvars import ContextVar
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

request_id_ctx_var: ContextVar[str | None] = ContextVar("request_id", default=None)
principal_ctx_var: ContextVar[str | None] = ContextVar("principal_id", default=None)
logger = logging.getLogger("sb_timers.request")

# Polled constantly by probes and scrapers; not worth an access line each.
QUIET_PATHS = frozenset({"/health", "/metrics"})


def _access_level(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag each request with a correlation id and write one access line for it."""

    def __init__(self, app, header_name: str = "X-Request-ID") -> None:  # type: ignore[override]
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(self.header_name) or uuid4().hex
        request.state.request_id = request_id
        ctx_token = request_id_ctx_var.set(request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(ctx_token)
        elapsed = round((time.perf_counter() - started) * 1000, 2)
        response.headers[self.header_name] = request_id

        if request.url.path in QUIET_PATHS and response.status_code < 400:
            return response
        fields = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": elapsed,
            # Set by SessionMiddleware, which runs inside this one.
            "principal": getattr(request.state, "principal", None),
            "authenticated": getattr(request.state, "auth", None) is not None,
        }
        logger.log(_access_level(response.status_code), "request.completed", extra={"extra_data": fields})
        return response
