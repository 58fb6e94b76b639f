"""CRUD helpers for user accounts."""

from __future__ import annotations

import re

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.errors import AuthenticationError, ConflictError, ValidationError
from ..core.security import hash_password, verify_password
from ..models.user import User

USERNAME_RE = re.compile(r"^[A-Za-z0-9_]{3,64}$")


def get_user_by_username(db: Session, username: str) -> User | None:
    return db.execute(select(User).where(User.username == username)).scalars().first()


def _require_credentials(username: str, password: str) -> None:
    if not username or not password:
        raise ValidationError("Username and password are required", code="credentials_required")


def create_user(db: Session, username: str, password: str) -> User:
    username = (username or "").strip()
    _require_credentials(username, password)
    if not USERNAME_RE.match(username):
        raise ValidationError(
            "Username must be 3-64 characters of letters, numbers and underscores",
            code="invalid_username",
        )
    if get_user_by_username(db, username) is not None:
        raise ConflictError("User already exists", code="user_exists")
    user = User(username=username, password_hash=hash_password(password))
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        # Lost a race with a concurrent signup for the same name.
        db.rollback()
        raise ConflictError("User already exists", code="user_exists") from exc
    db.refresh(user)
    return user


def authenticate_user(db: Session, username: str, password: str) -> User:
    username = (username or "").strip()
    _require_credentials(username, password)
    user = get_user_by_username(db, username)
    if user is None or not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid username or password", code="invalid_credentials")
    return user
