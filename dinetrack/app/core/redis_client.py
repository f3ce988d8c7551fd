"""
Redis client initialization and connection management.

The realtime notification channel publishes through this client. The
application lifespan creates it and closes it on shutdown.
"""

import redis.asyncio as redis
from dinetrack.app.core.config import settings


def create_redis_client() -> redis.Redis:
    """Create the async Redis client."""
    return redis.from_url(
        settings.redis_url,
        decode_responses=settings.redis_decode_responses,
    )

