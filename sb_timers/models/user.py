"""SQLAlchemy model for registered users."""

from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer, String

from ..db.session import Base
from ..services.timecalc import utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(64), nullable=False, unique=True, index=True)
    password_hash = Column(String(128), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


__all__ = ["User"]
