"""SQLAlchemy engine and session helpers."""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from starlette.requests import HTTPConnection

from ..core.errors import InternalError

# ``Base`` is the parent class for every SQLAlchemy model defined in sb_timers/models.
Base = declarative_base()


def build_engine(url: str, **kwargs) -> Engine:
    # SQLite connections are shared between the threadpool workers that run
    # sync handlers, so the same-thread check has to go.
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        kwargs["connect_args"] = connect_args
    return create_engine(url, **kwargs)


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def create_tables(engine: Engine) -> None:
    # Importing the models registers them with the metadata.
    from ..models import session as _session  # noqa: F401
    from ..models import timer as _timer  # noqa: F401
    from ..models import user as _user  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db(conn: HTTPConnection):
    """FastAPI dependency that yields a session and guarantees cleanup."""

    db = conn.app.state.session_factory()
    try:
        yield db
    except SQLAlchemyError as exc:
        db.rollback()
        raise InternalError() from exc
    finally:
        db.close()
