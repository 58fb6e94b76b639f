from __future__ import annotations
from datetime import datetime, timedelta, timezone

EPOCH = datetime(1970, 1, 1)
_ONE_MS = timedelta(milliseconds=1)


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(dt: datetime) -> datetime:
    """Drivers that keep tz info (Postgres) hand back aware datetimes; normalise them."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def to_epoch_ms(dt: datetime | None) -> int | None:
    """Whole milliseconds since the Unix epoch.
    Integer arithmetic keeps ``end - start`` exact for stored pairs.
    """
    if dt is None:
        return None
    return (as_naive_utc(dt) - EPOCH) // _ONE_MS


def elapsed_ms(start: datetime, now: datetime | None = None) -> int:
    """Milliseconds from start until now (never negative)."""
    start_ms = to_epoch_ms(start)
    now_ms = to_epoch_ms(now or utcnow())
    return max(now_ms - start_ms, 0)


def duration_ms(start: datetime, end: datetime) -> int:
    return to_epoch_ms(end) - to_epoch_ms(start)
