"""
Celery tasks for order processing.

Tasks:
    - send_push_notification: Fan a notification out to a restaurant's devices
    - expire_response_windows: Periodic sweep auto-rejecting overdue orders
"""
import logging
from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task
def send_push_notification(restaurant_uid: str, title: str, body: str, data: dict):
    """
    Deliver a push notification to every registered device of a restaurant.

    Fire-and-forget: delivery failures are logged, never raised. Tokens the
    push service reports as unregistered are pruned from the registry.

    Returns:
        Dict with delivery counts
    """
    from django.utils import timezone
    from core.push import PushClient, PushDeliveryError
    from restaurants.models import DeviceToken

    tokens = list(
        DeviceToken.objects.filter(restaurant__uid=restaurant_uid).order_by('id').values_list('token', flat=True)
    )
    if not tokens:
        logger.info(f"No device tokens for restaurant {restaurant_uid}, skipping push")
        return {'status': 'skipped', 'sent': 0}

    try:
        result = PushClient().send(tokens, title, body, data)
    except PushDeliveryError as e:
        logger.error(f"Push to restaurant {restaurant_uid} failed: {e}")
        return {'status': 'error', 'sent': 0}

    if result.invalid_tokens:
        pruned, _ = DeviceToken.objects.filter(token__in=result.invalid_tokens).delete()
        logger.info(f"Pruned {pruned} invalid device tokens for restaurant {restaurant_uid}")

    if result.sent:
        DeviceToken.objects.filter(
            restaurant__uid=restaurant_uid
        ).exclude(token__in=result.invalid_tokens).update(last_used_at=timezone.now())

    logger.info(f"Push to restaurant {restaurant_uid}: {result.sent} sent, {result.failed} failed")
    return {
        'status': 'success',
        'sent': result.sent,
        'failed': result.failed,
        'pruned': len(result.invalid_tokens),
    }


@shared_task
def expire_response_windows():
    """
    Periodic task auto-rejecting pending orders past their response deadline.

    In-process timers are lost when a process restarts; this sweep catches
    the orders they would have rejected.
    """
    from orders.services import expire_overdue_orders

    count = expire_overdue_orders()
    if count > 0:
        logger.warning(f"Auto-rejected {count} orders with expired response windows")

    return {'processed': count}
