"""Pydantic schemas for timer payloads on the REST API and the push channel."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..services.timecalc import duration_ms, elapsed_ms, to_epoch_ms


class TimerCreate(BaseModel):
    description: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "example": {"description": "write docs"}
        }
    }


class TimerOut(BaseModel):
    """Wire shape of a timer. Times are epoch milliseconds; unset fields are omitted."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    description: str
    start: int
    is_active: bool = Field(alias="isActive")
    end: Optional[int] = None
    duration: Optional[int] = None
    progress: Optional[int] = None

    @classmethod
    def from_timer(cls, timer, now: datetime | None = None) -> "TimerOut":
        payload = cls(
            id=timer.id,
            description=timer.description,
            start=to_epoch_ms(timer.start_time),
            is_active=bool(timer.is_active),
        )
        if timer.end_time is not None:
            payload.end = to_epoch_ms(timer.end_time)
            payload.duration = duration_ms(timer.start_time, timer.end_time)
        if timer.is_active:
            payload.progress = elapsed_ms(timer.start_time, now)
        return payload

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class TimerDeleted(BaseModel):
    message: str = "Timer deleted successfully"
