"""
Redis client utilities.

Provides a lazily initialized Redis client to avoid import-time connections.
"""

import functools

import redis

from inboxcore.settings import get_settings


@functools.lru_cache()
def get_redis_client() -> redis.Redis:
    """
    Get Redis client (cached).

    Responses are decoded to str, stream entries come back as dict[str, str].
    """
    return redis.from_url(get_settings().REDIS_URL, decode_responses=True)
