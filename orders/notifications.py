"""
Notifier - turns order domain events into real-time events and pushes.

Connected in ``OrdersConfig.ready()``. Transport failures stay here: the
real-time publisher logs and drops, and push delivery is queued to Celery.
"""
import logging

from django.dispatch import receiver

from core import realtime
from .events import order_status_changed, payment_confirmed
from .models import Order
from .tasks import send_push_notification

logger = logging.getLogger(__name__)


def order_event_payload(order: Order) -> dict:
    return {
        'id': order.id,
        'restaurant_uid': order.restaurant.uid,
        'customer_uid': order.customer.uid,
        'customer_name': order.customer_name,
        'phone_number': order.phone_number,
        'status': order.status,
        'payment_status': order.payment_status,
        'total_price': str(order.total_price),
        'delivery_address': order.delivery_address,
        'location_accuracy': order.location_accuracy,
        'notes': order.notes,
        'response_deadline': order.response_deadline,
        'rejection_reason': order.rejection_reason or None,
        'auto_rejected': order.auto_rejected,
        'items': [
            {'menu_item_id': item.menu_item_id, 'name': item.item_name, 'quantity': item.quantity}
            for item in order.items.all()
        ],
        'created_at': order.created_at,
        'updated_at': order.updated_at,
    }


def queue_push(restaurant_uid, title, body, data):
    try:
        send_push_notification.delay(restaurant_uid, title, body, data)
    except Exception as e:
        # Don't fail the transition if task queuing fails
        logger.error(f"Failed to queue push notification for {restaurant_uid}: {e}")


@receiver(payment_confirmed, dispatch_uid='orders.notify_payment_confirmed')
def notify_payment_confirmed(sender, order, **kwargs):
    """New paid order for the restaurant: live event plus push."""
    payload = order_event_payload(order)
    restaurant_uid = order.restaurant.uid

    realtime.publish(realtime.restaurant_channel(restaurant_uid), 'newOrder', payload)
    realtime.publish(realtime.customer_channel(order.customer.uid), 'orderStatusUpdated', payload)

    queue_push(
        restaurant_uid,
        'New order received',
        f"Order #{order.id} from {order.customer_name} - ₹{order.total_price}",
        {
            'type': 'new_order',
            'order_id': str(order.id),
            'response_deadline': order.response_deadline.isoformat() if order.response_deadline else '',
        },
    )


@receiver(order_status_changed, dispatch_uid='orders.notify_status_changed')
def notify_status_changed(sender, order, previous_status=None, **kwargs):
    payload = order_event_payload(order)
    payload['previous_status'] = previous_status

    realtime.publish(realtime.restaurant_channel(order.restaurant.uid), 'orderStatusUpdated', payload)
    realtime.publish(realtime.customer_channel(order.customer.uid), 'orderStatusUpdated', payload)

    if order.auto_rejected and order.status == Order.Status.REJECTED:
        queue_push(
            order.restaurant.uid,
            'Order auto-rejected',
            f"Order #{order.id} was rejected because it was not answered in time",
            {'type': 'order_auto_rejected', 'order_id': str(order.id)},
        )
