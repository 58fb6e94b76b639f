# Request-scoped FastAPI dependencies: ``from sb_timers.deps.auth import require_user``.
