"""Timer repository. Every query is scoped to the owning user."""

from __future__ import annotations

from sqlalchemy import delete, desc, select, update
from sqlalchemy.orm import Session

from ..core.errors import AuthorizationError, NotFoundError, ValidationError
from ..models.timer import Timer
from ..services.timecalc import utcnow

DESCRIPTION_MAX_LENGTH = 255


def _not_found(db: Session, user_id: int, timer_id: int, message: str) -> NotFoundError:
    # Both cases render the same 404; only the server log tells them apart.
    owner = db.execute(select(Timer.user_id).where(Timer.id == timer_id)).scalar_one_or_none()
    if owner is not None and owner != user_id:
        return AuthorizationError(message)
    return NotFoundError(message)


def list_timers(db: Session, user_id: int, only_active: bool = False) -> list[Timer]:
    stmt = select(Timer).where(Timer.user_id == user_id)
    if only_active:
        stmt = stmt.where(Timer.is_active.is_(True))
    stmt = stmt.order_by(desc(Timer.created_at), desc(Timer.start_time), desc(Timer.id))
    return list(db.execute(stmt).scalars().all())


def get_timer(db: Session, user_id: int, timer_id: int) -> Timer | None:
    stmt = select(Timer).where(Timer.id == timer_id, Timer.user_id == user_id)
    return db.execute(stmt).scalars().first()


def create_timer(
    db: Session,
    user_id: int,
    description: str | None,
    max_length: int = DESCRIPTION_MAX_LENGTH,
) -> Timer:
    raw = description or ""
    cleaned = raw.strip()
    if not cleaned:
        raise ValidationError("Description is required", code="description_required")
    if len(raw) > max_length:
        raise ValidationError("Description too long", code="description_too_long")
    now = utcnow()
    timer = Timer(
        user_id=user_id,
        description=cleaned,
        start_time=now,
        end_time=None,
        is_active=True,
        created_at=now,
    )
    db.add(timer)
    db.commit()
    db.refresh(timer)
    return timer


def stop_timer(db: Session, user_id: int, timer_id: int) -> Timer:
    # Single conditional UPDATE: the database decides which of two racing
    # stops wins. Missing, foreign and already-stopped timers all match zero rows.
    result = db.execute(
        update(Timer)
        .where(Timer.id == timer_id, Timer.user_id == user_id, Timer.is_active.is_(True))
        .values(is_active=False, end_time=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise _not_found(db, user_id, timer_id, "Timer not found or already stopped")
    db.commit()
    timer = db.get(Timer, timer_id, populate_existing=True)
    if timer is None:
        # Deleted between the update and the read.
        raise NotFoundError("Timer not found or already stopped")
    return timer


def delete_timer(db: Session, user_id: int, timer_id: int) -> None:
    result = db.execute(
        delete(Timer)
        .where(Timer.id == timer_id, Timer.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise _not_found(db, user_id, timer_id, "Timer not found")
    db.commit()
