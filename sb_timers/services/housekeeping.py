from __future__ import annotations

import asyncio
import logging
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ..crud.sessions import purge_expired_sessions

logger = logging.getLogger(__name__)


class SessionSweeper:
    """Deletes expired session rows on a long, fixed cycle."""

    def __init__(self, session_factory: Callable[[], Session], interval: float) -> None:
        self.session_factory = session_factory
        self.interval = interval

    def sweep_once(self) -> int:
        with self.session_factory() as db:
            removed = purge_expired_sessions(db)
        logger.info("sessions.purged", extra={"extra_data": {"removed": removed}})
        return removed

    async def sweep(self) -> int:
        try:
            return await run_in_threadpool(self.sweep_once)
        except SQLAlchemyError:
            logger.exception("sessions.purge_failed")
            return 0

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.sweep()
