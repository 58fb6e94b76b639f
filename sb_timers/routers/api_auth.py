from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from ..crud.sessions import create_session, delete_session
from ..crud.users import authenticate_user, create_user
from ..db.session import get_db
from ..deps.auth import get_app_settings, require_user
from ..middlewares import AuthContext
from ..schemas.auth import Credentials, CurrentUser, SessionOut, UserOut

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


def _set_session_cookie(response: Response, settings, token: str) -> None:
    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        token,
        max_age=int(settings.session_ttl.total_seconds()),
        httponly=True,
        samesite="lax",
        secure=settings.SESSION_COOKIE_SECURE,
    )


@router.post("/signup", response_model=SessionOut, summary="Register and open a session")
def signup(
    payload: Credentials,
    response: Response,
    db: Session = Depends(get_db),
    settings=Depends(get_app_settings),
):
    user = create_user(db, payload.username, payload.password)
    token = create_session(db, user.id, settings.session_ttl)
    logger.info("auth.signup", extra={"extra_data": {"user_id": user.id}})
    _set_session_cookie(response, settings, token)
    return SessionOut(session_id=token)


@router.post("/login", response_model=SessionOut, summary="Open a new session")
def login(
    payload: Credentials,
    response: Response,
    db: Session = Depends(get_db),
    settings=Depends(get_app_settings),
):
    user = authenticate_user(db, payload.username, payload.password)
    token = create_session(db, user.id, settings.session_ttl)
    logger.info("auth.login", extra={"extra_data": {"user_id": user.id}})
    _set_session_cookie(response, settings, token)
    return SessionOut(session_id=token)


@router.post("/logout", summary="Close the presented session")
def logout(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    settings=Depends(get_app_settings),
):
    delete_session(db, getattr(request.state, "session_token", None))
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return {}


@router.get("/api/user", response_model=CurrentUser)
def current_user(auth: AuthContext = Depends(require_user)):
    return CurrentUser(user=UserOut(id=auth.user_id, username=auth.username))
