"""
Shared Redis client used for real-time channels and rate limiting.

The connection is created lazily so importing this module never talks to
Redis; callers handle ``redis.RedisError`` themselves.
"""
import logging

import redis
from django.conf import settings

logger = logging.getLogger(__name__)

_client = None


def get_redis():
    """Return the process-wide Redis client, creating it on first use."""
    global _client
    if _client is None:
        _client = redis.Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=5,
        )
        logger.debug(f"Redis client created for {settings.REDIS_URL}")
    return _client
