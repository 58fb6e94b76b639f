from __future__ import annotations

from fastapi import Request

from ..core.errors import AuthenticationError
from ..middlewares import AuthContext
from ..services.notifier import PushNotifier


def optional_user(request: Request) -> AuthContext | None:
    return getattr(request.state, "auth", None)


def require_user(request: Request) -> AuthContext:
    auth = optional_user(request)
    if auth is None:
        raise AuthenticationError()
    return auth


def get_notifier(request: Request) -> PushNotifier:
    return request.app.state.notifier


def get_app_settings(request: Request):
    return request.app.state.settings
