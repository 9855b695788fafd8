"""Health check endpoint.

Learn: Reports whether the server is up and the database answers within
the store deadline. Redis is optional, so its absence never makes the
service unhealthy; it is reported as "disabled". Failures are logged
with detail but only summarized in the response, since /health is public.
"""

import asyncio

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from redis.asyncio import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from tenantauth import __version__

logger = structlog.get_logger()

router = APIRouter()


async def _check_database(request: Request) -> str:
    settings = request.app.state.settings

    async def _ping():
        async with request.app.state.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    try:
        await asyncio.wait_for(_ping(), timeout=settings.store_timeout_seconds)
    except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
        logger.warning("health.database_unreachable", error=str(e))
        return "error"
    return "ok"


async def _check_redis(request: Request) -> str:
    redis = getattr(request.app.state, "redis", None)
    if redis is None:
        return "disabled"
    try:
        await redis.ping()
    except (RedisError, OSError) as e:
        logger.warning("health.redis_unreachable", error=str(e))
        return "error"
    return "ok"


@router.get("/health")
async def health_check(request: Request):
    """Check server health and dependency connectivity."""
    checks = {
        "server": "ok",
        "version": __version__,
        "database": await _check_database(request),
        "redis": await _check_redis(request),
    }

    healthy = checks["database"] == "ok"
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "healthy" if healthy else "degraded", **checks},
    )
