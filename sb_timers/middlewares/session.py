from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import HTTPConnection, Request
from starlette.responses import Response

from ..crud.sessions import resolve_session
from .request_id import principal_ctx_var

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthContext:
    user_id: int
    username: str
    session_token: str

    @property
    def principal(self) -> str:
        return f"user:{self.user_id}"


def extract_session_token(conn: HTTPConnection, settings) -> str | None:
    """Header first, then query parameter, then cookie."""
    for candidate in (
        conn.headers.get(settings.SESSION_HEADER_NAME),
        conn.query_params.get(settings.SESSION_QUERY_PARAM),
        conn.cookies.get(settings.SESSION_COOKIE_NAME),
    ):
        if candidate and candidate.strip():
            return candidate.strip()
    return None


class SessionMiddleware(BaseHTTPMiddleware):
    """Resolve the session token on every HTTP request before routing.

    ``request.state.auth`` is an :class:`AuthContext` or ``None``. Whether a
    route needs it is decided by the ``require_user`` dependency, not here.
    """

    def _resolve(self, session_factory, token: str, ttl) -> AuthContext | None:
        with session_factory() as db:
            resolved = resolve_session(db, token, ttl)
        if resolved is None:
            return None
        _, user = resolved
        return AuthContext(user_id=user.id, username=user.username, session_token=token)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        settings = request.app.state.settings
        token = extract_session_token(request, settings)
        request.state.session_token = token
        request.state.auth = None
        if token:
            try:
                request.state.auth = await run_in_threadpool(
                    self._resolve, request.app.state.session_factory, token, settings.session_ttl
                )
            except SQLAlchemyError:
                logger.exception("session.resolve_failed")
        auth = request.state.auth
        if auth is None:
            return await call_next(request)
        request.state.principal = auth.principal
        ctx_token = principal_ctx_var.set(auth.principal)
        try:
            return await call_next(request)
        finally:
            principal_ctx_var.reset(ctx_token)
