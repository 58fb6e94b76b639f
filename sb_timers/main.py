"""Application factory and top-level wiring.

``create_app`` brings together configuration, the database, middleware,
routers, error handling and the two background loops (push ticker and
session sweeper). Tests call it with their own settings and session factory.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.orm import Session

from . import __version__
from .core.config import AppSettings, get_settings
from .core.errors import register_exception_handlers
from .core.logging import configure_logging
from .db.session import build_engine, build_session_factory, create_tables
from .middlewares import RequestIdMiddleware, SessionMiddleware
from .routers import api_auth, api_timers, push
from .services.housekeeping import SessionSweeper
from .services.notifier import PushNotifier

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: AppSettings = app.state.settings
    if app.state.configure_logging:
        configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT, service=settings.APP_NAME)
    create_tables(app.state.engine)

    notifier: PushNotifier = app.state.notifier
    sweeper = SessionSweeper(app.state.session_factory, settings.SESSION_SWEEP_INTERVAL_SECONDS)
    await sweeper.sweep()
    tasks = [
        asyncio.create_task(notifier.run_ticker(settings.BROADCAST_INTERVAL_SECONDS), name="push-ticker"),
        asyncio.create_task(sweeper.run(), name="session-sweeper"),
    ]
    logger.info("%s started", settings.APP_NAME)
    try:
        yield
    finally:
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.info("%s stopped", settings.APP_NAME)


def create_app(
    settings: AppSettings | None = None,
    session_factory: Callable[[], Session] | None = None,
    *,
    engine=None,
    configure_logs: bool = True,
) -> FastAPI:
    settings = settings or get_settings()
    if engine is None:
        engine = build_engine(settings.database_url)
    if session_factory is None:
        session_factory = build_session_factory(engine)

    app = FastAPI(title=settings.APP_NAME, version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.configure_logging = configure_logs
    app.state.notifier = PushNotifier(
        session_factory,
        session_ttl=settings.session_ttl,
        send_timeout=settings.PUSH_SEND_TIMEOUT_SECONDS,
    )

    # Last added runs first: RequestId wraps Session so the access log sees the principal.
    app.add_middleware(SessionMiddleware)
    app.add_middleware(RequestIdMiddleware)
    if settings.ALLOWED_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.ALLOWED_ORIGINS,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    register_exception_handlers(app)

    app.include_router(api_auth.router)
    app.include_router(api_timers.router)
    app.include_router(push.router)

    @app.get("/health")
    async def health() -> dict[str, object]:
        return {"ok": True, "connections": len(app.state.notifier.registry)}

    if settings.METRICS_ENABLED:
        Instrumentator().instrument(app).expose(app, include_in_schema=False)

    return app


app = create_app()


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run("sb_timers.main:app", host=settings.HOST, port=settings.PORT, log_config=None)


if __name__ == "__main__":
    run()
