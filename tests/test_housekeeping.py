"""Tests for the expired-session sweeper."""

import asyncio
import os
import sys
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATA_DIR", str(ROOT / "data"))

from sb_timers.crud.sessions import create_session
from sb_timers.crud.users import create_user
from sb_timers.db.session import build_session_factory, create_tables
from sb_timers.models.session import UserSession
from sb_timers.services.housekeeping import SessionSweeper
from sb_timers.services.timecalc import utcnow


@pytest.fixture()
def factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    create_tables(engine)
    return build_session_factory(engine)


@pytest.fixture()
def tokens(factory):
    with factory() as db:
        user = create_user(db, "sweeper", "pw")
        live = create_session(db, user.id)
        dead = create_session(db, user.id)
        db.get(UserSession, dead).expires_at = utcnow() - timedelta(seconds=1)
        db.commit()
    return live, dead


def _remaining(factory):
    with factory() as db:
        return {row.session_id for row in db.query(UserSession).all()}


def test_sweep_removes_expired_sessions(factory, tokens):
    live, _ = tokens
    assert asyncio.run(SessionSweeper(factory, 3600).sweep()) == 1
    assert _remaining(factory) == {live}


def test_sweep_survives_database_errors(caplog):
    def broken_factory():
        raise OperationalError("DELETE FROM sessions", {}, Exception("database is locked"))

    with caplog.at_level("ERROR"):
        assert asyncio.run(SessionSweeper(broken_factory, 3600).sweep()) == 0
    assert any(record.getMessage() == "sessions.purge_failed" for record in caplog.records)


def test_run_sweeps_on_each_interval(factory, tokens):
    live, dead = tokens
    sweeper = SessionSweeper(factory, 0.01)

    async def run_briefly():
        task = asyncio.create_task(sweeper.run())
        await asyncio.sleep(0.2)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(run_briefly())
    assert _remaining(factory) == {live}
