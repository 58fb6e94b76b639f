from __future__ import annotations

from .request_id import RequestIdMiddleware, principal_ctx_var, request_id_ctx_var
from .session import AuthContext, SessionMiddleware, extract_session_token

__all__ = [
    "AuthContext",
    "RequestIdMiddleware",
    "SessionMiddleware",
    "extract_session_token",
    "request_id_ctx_var",
    "principal_ctx_var",
]
