"""Redis connection for rate limiting.

Learn: Redis is optional. The app starts without it and the rate limit
middleware simply lets requests through when no client is available
(e.g., in tests). The client lives on app.state, set up in lifespan.
"""

from typing import Optional

import redis.asyncio as aioredis
import structlog

logger = structlog.get_logger()


async def init_redis(url: str) -> Optional[aioredis.Redis]:
    """Connect and ping. Returns None if Redis is unreachable."""
    client = aioredis.from_url(url, encoding="utf-8", decode_responses=True)
    try:
        await client.ping()
    except (aioredis.RedisError, OSError) as e:
        logger.warning("tenantauth.redis_unavailable", url=url, error=str(e))
        await client.aclose()
        return None
    logger.info("tenantauth.redis_connected", url=url)
    return client


async def close_redis(client: Optional[aioredis.Redis]) -> None:
    """Close the Redis connection pool."""
    if client is not None:
        await client.aclose()
