"""Redis clients shared by the publish queue and health checks"""
import asyncio
import logging

import redis
import redis.asyncio as aioredis

from crosspost.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None
_async_client = None


def get_redis_client():
    """Get or create the synchronous Redis client"""
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


def get_async_redis_client():
    """Get or create the async Redis client.

    Recreates the client when it is bound to a different event loop, which
    happens when tests (or uvicorn reloads) run several loops in one process.
    """
    global _async_client

    try:
        current_loop = asyncio.get_running_loop()
    except RuntimeError:
        return None

    if _async_client is not None:
        client_loop = getattr(_async_client.connection_pool, '_loop', None)
        if client_loop is not current_loop:
            _async_client = None

    if _async_client is None:
        _async_client = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            max_connections=20
        )
        _async_client.connection_pool._loop = current_loop

    return _async_client


def ping() -> bool:
    """Check Redis connectivity for startup and /health"""
    try:
        return bool(get_redis_client().ping())
    except redis.RedisError as e:
        logger.error(f"Redis ping failed: {e}")
        return False
