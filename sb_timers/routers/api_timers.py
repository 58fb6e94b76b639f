from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from ..crud.timers import create_timer, delete_timer, list_timers, stop_timer
from ..db.session import get_db
from ..deps.auth import get_app_settings, get_notifier, require_user
from ..middlewares import AuthContext
from ..schemas.timer import TimerCreate, TimerDeleted, TimerOut
from ..services.notifier import PushNotifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/timers", tags=["timers"])


def _notify(background_tasks: BackgroundTasks, notifier: PushNotifier, user_id: int) -> None:
    # Runs after the response is sent; a failed broadcast cannot undo the write.
    background_tasks.add_task(notifier.broadcast_all_timers, user_id)


@router.get("", response_model=list[TimerOut], response_model_exclude_none=True)
def api_list_timers(
    active: bool = Query(False, description="Only return running timers"),
    auth: AuthContext = Depends(require_user),
    db: Session = Depends(get_db),
):
    timers = list_timers(db, auth.user_id, only_active=active)
    return [TimerOut.from_timer(timer) for timer in timers]


@router.post("", response_model=TimerOut, response_model_exclude_none=True)
def api_create_timer(
    payload: TimerCreate,
    background_tasks: BackgroundTasks,
    auth: AuthContext = Depends(require_user),
    db: Session = Depends(get_db),
    notifier: PushNotifier = Depends(get_notifier),
    settings=Depends(get_app_settings),
):
    timer = create_timer(db, auth.user_id, payload.description, max_length=settings.DESCRIPTION_MAX_LENGTH)
    logger.info("timer.created", extra={"extra_data": {"timer_id": timer.id}})
    _notify(background_tasks, notifier, auth.user_id)
    return TimerOut.from_timer(timer)


@router.post("/{timer_id}/stop", response_model=TimerOut, response_model_exclude_none=True)
def api_stop_timer(
    timer_id: int,
    background_tasks: BackgroundTasks,
    auth: AuthContext = Depends(require_user),
    db: Session = Depends(get_db),
    notifier: PushNotifier = Depends(get_notifier),
):
    timer = stop_timer(db, auth.user_id, timer_id)
    logger.info("timer.stopped", extra={"extra_data": {"timer_id": timer.id}})
    _notify(background_tasks, notifier, auth.user_id)
    return TimerOut.from_timer(timer)


@router.delete("/{timer_id}", response_model=TimerDeleted)
def api_delete_timer(
    timer_id: int,
    background_tasks: BackgroundTasks,
    auth: AuthContext = Depends(require_user),
    db: Session = Depends(get_db),
    notifier: PushNotifier = Depends(get_notifier),
):
    delete_timer(db, auth.user_id, timer_id)
    logger.info("timer.deleted", extra={"extra_data": {"timer_id": timer_id}})
    _notify(background_tasks, notifier, auth.user_id)
    return TimerDeleted()
