"""Session store: opaque tokens mapped to users with a sliding expiration."""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..core.security import new_session_token
from ..models.session import UserSession
from ..models.user import User
from ..services.timecalc import utcnow

DEFAULT_TTL = timedelta(hours=24)


def create_session(db: Session, user_id: int, ttl: timedelta = DEFAULT_TTL) -> str:
    now = utcnow()
    token = new_session_token()
    db.add(UserSession(session_id=token, user_id=user_id, expires_at=now + ttl, created_at=now))
    db.commit()
    return token


def resolve_session(
    db: Session,
    token: str | None,
    ttl: timedelta = DEFAULT_TTL,
    *,
    extend: bool = True,
) -> tuple[UserSession, User] | None:
    """Look up a non-expired session joined to its user.

    On a hit the expiration slides to ``now + ttl``. A miss (no token, unknown
    token, expired row) returns ``None`` and writes nothing.
    """
    if not token:
        return None
    now = utcnow()
    stmt = (
        select(UserSession, User)
        .join(User, User.id == UserSession.user_id)
        .where(UserSession.session_id == token, UserSession.expires_at > now)
    )
    row = db.execute(stmt).first()
    if row is None:
        return None
    user_session, user = row
    if extend:
        user_session.expires_at = now + ttl
        db.commit()
    return user_session, user


def delete_session(db: Session, token: str | None) -> bool:
    if not token:
        return False
    result = db.execute(delete(UserSession).where(UserSession.session_id == token))
    db.commit()
    return result.rowcount > 0


def purge_expired_sessions(db: Session) -> int:
    result = db.execute(delete(UserSession).where(UserSession.expires_at <= utcnow()))
    db.commit()
    return result.rowcount or 0
