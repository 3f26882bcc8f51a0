"""
Domain events emitted by the order workflow.

Core code never talks to sockets or push services directly; it sends these
signals once the triggering transaction has committed, and the notifier
subscribes to them (see ``orders.notifications``).

Signals:
    - payment_confirmed: order paid and handed to the restaurant
      (kwargs: order)
    - order_status_changed: any other lifecycle move
      (kwargs: order, previous_status)
"""
import logging

from django.db import transaction
from django.dispatch import Signal

logger = logging.getLogger(__name__)

payment_confirmed = Signal()
order_status_changed = Signal()


def emit_on_commit(signal, order, **kwargs):
    """Send ``signal`` for ``order`` after the current transaction commits."""
    def _send():
        for receiver, result in signal.send_robust(sender=order.__class__, order=order, **kwargs):
            if isinstance(result, Exception):
                logger.error(f"Receiver {receiver.__name__} failed for order #{order.id}: {result}")

    transaction.on_commit(_send)
