"""
Redis-based rate limiting for API endpoints.
Fixed window counter keyed by view and client IP.
"""
import logging
from functools import wraps

import redis
from django.conf import settings
from rest_framework import status
from rest_framework.response import Response

from .exceptions import error_body
from .redis_client import get_redis

logger = logging.getLogger(__name__)


def get_client_ip(request):
    """Extract client IP address from request."""
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        return x_forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR', 'unknown')


def rate_limit(max_requests: int = 20, window_seconds: int = 60):
    """
    Rate limiting decorator for APIView handler methods.

    Usage:
        @rate_limit(30, 60)  # 30 requests per minute
        def post(self, request, pk):
            ...

    Fails open: if Redis is down, the request goes through.
    """
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(self, request, *args, **kwargs):
            if not getattr(settings, 'RATE_LIMIT_ENABLED', True):
                return view_func(self, request, *args, **kwargs)

            key = f"rate_limit:{self.__class__.__name__}.{view_func.__name__}:{get_client_ip(request)}"
            try:
                client = get_redis()
                current_count = client.incr(key)
                if current_count == 1:
                    client.expire(key, window_seconds)
                ttl = client.ttl(key)
            except redis.RedisError as e:
                logger.error(f"Redis error in rate limiting: {e}")
                return view_func(self, request, *args, **kwargs)

            if current_count > max_requests:
                logger.warning(f"Rate limit exceeded for {key}")
                body = error_body(
                    'rate_limited',
                    f'Maximum {max_requests} requests per {window_seconds} seconds allowed.',
                )
                body['retry_after'] = ttl
                return Response(
                    body,
                    status=status.HTTP_429_TOO_MANY_REQUESTS,
                    headers={
                        'X-RateLimit-Limit': str(max_requests),
                        'X-RateLimit-Remaining': '0',
                        'Retry-After': str(ttl),
                    },
                )

            response = view_func(self, request, *args, **kwargs)
            response['X-RateLimit-Limit'] = str(max_requests)
            response['X-RateLimit-Remaining'] = str(max(0, max_requests - current_count))
            return response

        return wrapper
    return decorator
