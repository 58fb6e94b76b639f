"""SQLAlchemy model for login sessions keyed by an opaque token."""

from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from ..db.session import Base
from ..services.timecalc import utcnow


class UserSession(Base):
    """One row per signup/login. Valid while ``expires_at`` is in the future."""

    __tablename__ = "sessions"

    session_id = Column(String(64), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


__all__ = ["UserSession"]
