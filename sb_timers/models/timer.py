"""SQLAlchemy model for a user's timer."""

from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String

from ..db.session import Base
from ..services.timecalc import utcnow


class Timer(Base):
    """A named timer. ``end_time`` is set exactly when ``is_active`` is false."""

    __tablename__ = "timers"
    __table_args__ = (Index("ix_timers_user_active", "user_id", "is_active"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(String(255), nullable=False)
    start_time = Column(DateTime, nullable=False, default=utcnow)
    end_time = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


__all__ = ["Timer"]
