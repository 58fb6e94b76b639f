"""Error taxonomy and the JSON envelope every failure is rendered with.

Handlers and repositories raise the ``AppError`` subclasses below; the
exception handlers registered by :func:`register_exception_handlers` turn them
into ``{"error": ..., "code": ...}`` responses. Unexpected exceptions are
logged with their traceback and surfaced only as a generic message.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Internal server error"


class AppError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "internal_error"
    default_message: str = GENERIC_ERROR_MESSAGE

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        self.message = message or self.default_message
        if code:
            self.code = code
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"
    default_message = "Invalid request"


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "authentication_required"
    default_message = "Authentication required"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_message = "Not found"


class AuthorizationError(NotFoundError):
    """Valid session, wrong owner. Rendered exactly like ``NotFoundError``."""


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"
    default_message = "Conflict"


class InternalError(AppError):
    pass


class ErrorEnvelope(JSONResponse):
    def __init__(
        self,
        *,
        status_code: int,
        code: str,
        message: str,
        details: Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        payload: dict[str, Any] = {"error": message, "code": code}
        if details is not None:
            payload["details"] = details
        super().__init__(payload, status_code=status_code, headers=headers)


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("app.error %s %s", request.method, request.url.path, exc_info=exc)
        return ErrorEnvelope(status_code=exc.status_code, code=exc.code, message=GENERIC_ERROR_MESSAGE)
    if isinstance(exc, AuthorizationError):
        logger.warning(
            "authorization.denied %s %s",
            request.method,
            request.url.path,
            extra={"extra_data": {"principal": getattr(request.state, "principal", None)}},
        )
    headers = {"WWW-Authenticate": "Session"} if isinstance(exc, AuthenticationError) else None
    return ErrorEnvelope(status_code=exc.status_code, code=exc.code, message=exc.message, headers=headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    message = detail if isinstance(detail, str) else "Error"
    details = detail if isinstance(detail, dict) else None
    return ErrorEnvelope(status_code=exc.status_code, code="http_error", message=message, details=details)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    return ErrorEnvelope(
        status_code=status.HTTP_400_BAD_REQUEST,
        code="validation_error",
        message="Validation failed",
        details={"errors": errors},
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("unhandled.error %s %s", request.method, request.url.path, exc_info=exc)
    return ErrorEnvelope(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code="internal_error",
        message=GENERIC_ERROR_MESSAGE,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
