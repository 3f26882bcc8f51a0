"""
Real-time event publishing over Redis pub/sub.

Channels are keyed by identity: ``restaurant:{uid}`` and ``customer:{uid}``.
A socket gateway subscribes to these and relays events to connected apps.
Publishing is best effort: transport failures are logged, never raised.
"""
import json
import logging

import redis
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder

from .redis_client import get_redis

logger = logging.getLogger(__name__)


def restaurant_channel(restaurant_uid: str) -> str:
    return f"restaurant:{restaurant_uid}"


def customer_channel(customer_uid: str) -> str:
    return f"customer:{customer_uid}"


def publish(channel: str, event: str, payload: dict) -> bool:
    """
    Publish ``event`` with ``payload`` on ``channel``.

    Returns True when Redis accepted the message.
    """
    if not getattr(settings, 'REALTIME_ENABLED', True):
        logger.debug(f"Realtime disabled, dropping {event} for {channel}")
        return False

    message = json.dumps({'event': event, 'data': payload}, cls=DjangoJSONEncoder)
    try:
        receivers = get_redis().publish(channel, message)
    except redis.RedisError as e:
        logger.error(f"Failed to publish {event} on {channel}: {e}")
        return False

    logger.info(f"Published {event} on {channel} ({receivers} subscribers)")
    return True
