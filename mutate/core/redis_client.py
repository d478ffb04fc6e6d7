"""Redis client wrapper shared by the job store, quota counters and RQ queue."""

import logging
from typing import Optional

import redis as redis_lib

from mutate.core.config import settings

logger = logging.getLogger(__name__)

_client: Optional[redis_lib.Redis] = None


def init_redis_client() -> redis_lib.Redis:
    """Initialize the Redis client."""
    global _client
    _client = redis_lib.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        decode_responses=True,
    )
    logger.info(f"Redis client initialized ({settings.redis_host}:{settings.redis_port})")
    return _client


def get_redis_client() -> redis_lib.Redis:
    """Get the active Redis client, connecting lazily (worker processes never run the app lifespan)."""
    if _client is None:
        return init_redis_client()
    return _client


def get_queue_connection() -> redis_lib.Redis:
    """A separate binary-safe connection for RQ, which stores pickled payloads."""
    return redis_lib.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
    )


def close_redis_client() -> None:
    """Close the Redis client."""
    global _client
    if _client:
        _client.close()
        _client = None
        logger.info("Redis client closed")


def check_connection() -> bool:
    """Check if Redis is reachable."""
    try:
        if _client is None:
            return False
        return _client.ping()
    except Exception:
        return False
