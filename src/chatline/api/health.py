"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running and
its dependencies are reachable. The database check uses the engine the
lifespan built (app.state.engine). Redis is optional, so a missing Redis
is reported as "disabled" rather than degrading the status.
"""

from fastapi import APIRouter, Request
from sqlalchemy import text

from chatline import __version__
from chatline.cache import get_redis

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    # Check database
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        checks["database"] = "error: not initialized"
    else:
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception as e:
            checks["database"] = f"error: {e}"

    # Check Redis
    try:
        redis = get_redis()
    except RuntimeError:
        checks["redis"] = "disabled"
    else:
        try:
            await redis.ping()
            checks["redis"] = "ok"
        except Exception as e:
            checks["redis"] = f"error: {e}"

    runtime = getattr(request.app.state, "chat", None)
    if runtime is not None:
        checks["connections"] = runtime.registry.connection_count()

    status = "healthy" if all(
        v in ("ok", "disabled") for k, v in checks.items() if k in ("server", "database", "redis")
    ) else "degraded"

    return {"status": status, **checks}
