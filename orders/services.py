"""
Order Service Layer - transactional order lifecycle.

Every mutation of an existing order runs inside ``transaction.atomic()``
with the order row locked via ``select_for_update()``, and re-checks the
current status before writing. Creation, payment reconciliation,
accept/reject and auto-reject for one order are therefore mutually
exclusive, while different orders proceed in parallel.

Notifications are never sent from here directly: domain events are
emitted on commit (see ``orders.events``).
"""
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from core.exceptions import (
    InvalidTransition,
    ItemUnavailable,
    NotFoundError,
    PaymentGatewayError,
    PriceMismatch,
    ValidationError,
)
from restaurants.services import get_customer, get_restaurant, orderable_menu_items
from .events import emit_on_commit, order_status_changed, payment_confirmed
from .models import Order, OrderItem, Trigger
from .payments import PaymentGatewayClient, payment_reference_for
from .pricing import PricedOrder, verify_order_pricing
from .scheduler import get_scheduler

logger = logging.getLogger(__name__)

AUTO_REJECT_REASON = 'Restaurant did not respond in time'

COORDINATE_PLACES = Decimal('0.000001')


def to_coordinate(value) -> Decimal:
    return Decimal(str(value)).quantize(COORDINATE_PLACES)


def validate_order_items(items: List[Dict]) -> None:
    """
    Validate order items structure.

    Args:
        items: List of dicts with 'menu_item_id' and 'quantity'

    Raises:
        ValidationError: If validation fails
    """
    if not items:
        raise ValidationError("Order must contain at least one item")

    seen_items = set()
    for idx, item in enumerate(items):
        if 'menu_item_id' not in item:
            raise ValidationError(f"Item {idx}: missing 'menu_item_id'")
        if 'quantity' not in item:
            raise ValidationError(f"Item {idx}: missing 'quantity'")

        quantity = item['quantity']
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise ValidationError(f"Item {idx}: quantity must be a positive integer")

        if item['menu_item_id'] in seen_items:
            raise ValidationError(f"Item {idx}: duplicate menu_item_id {item['menu_item_id']}")
        seen_items.add(item['menu_item_id'])


# =============================================================================
# State machine
# =============================================================================

def lock_order(order_id) -> Order:
    """Fetch ``order_id`` with a row lock. Must be called inside a transaction."""
    try:
        return Order.objects.select_for_update().get(id=order_id)
    except (Order.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(f"Order {order_id} not found")


def apply_transition(order: Order, new_status, trigger, **changes) -> str:
    """
    Move a locked order to ``new_status`` and persist it with ``changes``.

    Returns:
        The previous status

    Raises:
        InvalidTransition: If ``trigger`` may not perform this move
    """
    if not order.can_transition(new_status, trigger):
        raise InvalidTransition(str(order.status), str(new_status))

    previous = str(order.status)
    order.status = new_status
    for field_name, value in changes.items():
        setattr(order, field_name, value)
    order.save(update_fields=['status', 'updated_at', *changes])

    logger.info(f"Order #{order.id}: {previous} -> {new_status} ({trigger})")
    return previous


def _start_response_window(order: Order, scheduler) -> Dict:
    """
    Deadline fields for a new response window; the in-process timer is
    started once the surrounding transaction commits.
    """
    window = settings.ORDER_RESPONSE_WINDOW_SECONDS
    order_id = order.id
    transaction.on_commit(lambda: scheduler.schedule(order_id, window, auto_reject_order))
    return {'response_deadline': timezone.now() + timedelta(seconds=window)}


def confirm_paid_order(order: Order, scheduler=None) -> str:
    """
    Record a successful payment on a locked ``payment_pending`` order.

    A restaurant that is online with notifications on gets the order with a
    response window; otherwise the order is held until it comes online.

    Returns:
        The new order status
    """
    scheduler = scheduler or get_scheduler()
    restaurant = order.restaurant

    if restaurant.accepts_notifications:
        apply_transition(
            order, Order.Status.PENDING, Trigger.PAYMENT,
            payment_status=Order.PaymentStatus.SUCCESS,
            **_start_response_window(order, scheduler),
        )
        emit_on_commit(payment_confirmed, order)
    else:
        previous = apply_transition(
            order, Order.Status.PENDING_RESTAURANT_ONLINE, Trigger.PAYMENT,
            payment_status=Order.PaymentStatus.SUCCESS,
        )
        logger.info(f"Order #{order.id} held: restaurant {restaurant.uid} is offline or muted")
        emit_on_commit(order_status_changed, order, previous_status=previous)

    return str(order.status)


def fail_payment(order: Order, payment_status=Order.PaymentStatus.FAILED) -> str:
    """Cancel a locked ``payment_pending`` order whose payment did not go through."""
    return apply_transition(
        order, Order.Status.CANCELLED, Trigger.PAYMENT,
        payment_status=payment_status,
    )


# =============================================================================
# Creation
# =============================================================================

def create_order(data: Dict, gateway: Optional[PaymentGatewayClient] = None) -> Tuple[Order, PricedOrder]:
    """
    Create an order in ``payment_pending`` and open a payment session for it.

    Args:
        data: Validated order payload (see OrderCreateSerializer)
        gateway: Payment gateway client, defaults to PaymentGatewayClient()

    Returns:
        Tuple of (Order, PricedOrder with the fee breakdown)

    Raises:
        ValidationError: Malformed items
        NotFoundError: Restaurant or customer missing
        ItemUnavailable: A menu item is missing or vanished before insert
        PriceMismatch: Declared prices disagree with the menu
        PaymentGatewayError: Session creation failed; the order is kept,
            marked cancelled with payment_status=failed
    """
    items = data.get('items') or []
    validate_order_items(items)

    restaurant = get_restaurant(data.get('restaurant_uid'))
    customer = get_customer(data.get('customer_uid'))

    priced = verify_order_pricing(
        restaurant.uid,
        items,
        declared_subtotal=data.get('subtotal'),
        declared_total=data.get('total_amount'),
    )

    latitude = data.get('latitude')
    longitude = data.get('longitude')
    has_coordinates = latitude is not None and longitude is not None

    with transaction.atomic():
        # Lock menu rows so an item cannot be withdrawn mid-insert.
        # Order by id to prevent deadlocks.
        menu_ids = [line.menu_item_id for line in priced.lines]
        locked_menu = {
            m.id: m for m in orderable_menu_items(restaurant.uid)
            .select_for_update()
            .filter(id__in=menu_ids)
            .order_by('id')
        }

        missing = [menu_id for menu_id in menu_ids if menu_id not in locked_menu]
        if missing:
            raise ItemUnavailable(f"Menu items no longer available: {missing}")

        for line in priced.lines:
            if locked_menu[line.menu_item_id].price != line.unit_price:
                raise PriceMismatch(f"Price of {line.name} changed while ordering, please retry")

        order = Order.objects.create(
            restaurant=restaurant,
            customer=customer,
            customer_name=data['customer_name'],
            phone_number=data['phone_number'],
            delivery_address=data['delivery_address'],
            latitude=to_coordinate(latitude) if has_coordinates else None,
            longitude=to_coordinate(longitude) if has_coordinates else None,
            location_accuracy=(
                Order.LocationAccuracy.COORDINATES if has_coordinates
                else Order.LocationAccuracy.ADDRESS_ONLY
            ),
            payment_method=data['payment_method'],
            notes=data.get('notes') or '',
            total_price=priced.total,
            status=Order.Status.PAYMENT_PENDING,
            payment_status=Order.PaymentStatus.PENDING,
        )
        order.payment_reference = payment_reference_for(order)
        order.save(update_fields=['payment_reference'])

        OrderItem.objects.bulk_create([
            OrderItem(
                order=order,
                menu_item_id=line.menu_item_id,
                item_name=line.name,
                quantity=line.quantity,
                unit_price=line.unit_price,
            )
            for line in priced.lines
        ])

    logger.info(
        f"Created order #{order.id} for restaurant {restaurant.uid}: "
        f"{len(priced.lines)} items, total ₹{order.total_price}"
    )

    gateway = gateway or PaymentGatewayClient()
    try:
        session = gateway.create_session(order, customer)
    except PaymentGatewayError:
        with transaction.atomic():
            fail_payment(lock_order(order.id))
        logger.error(f"Order #{order.id} cancelled: payment session could not be created")
        raise

    order.payment_session_id = session.session_id
    order.gateway_order_id = session.gateway_order_id
    order.save(update_fields=['payment_session_id', 'gateway_order_id', 'updated_at'])
    logger.info(f"Payment session opened for order #{order.id}")

    return order, priced


# =============================================================================
# Queries
# =============================================================================

def get_order(order_id) -> Order:
    try:
        return Order.objects.select_related('restaurant', 'customer').prefetch_related(
            'items'
        ).get(id=order_id)
    except (Order.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(f"Order {order_id} not found")


def get_order_status(order_id) -> Dict:
    order = get_order(order_id)
    return {
        'order_id': order.id,
        'status': order.status,
        'payment_status': order.payment_status,
        'response_deadline': order.response_deadline,
        'auto_rejected': order.auto_rejected,
        'rejection_reason': order.rejection_reason or None,
    }


def list_orders_for_customer(customer_uid):
    customer = get_customer(customer_uid)
    return Order.objects.filter(customer=customer).select_related(
        'restaurant'
    ).prefetch_related('items').order_by('-created_at')


def list_orders_for_restaurant(restaurant_uid, status=None, limit=None):
    restaurant = get_restaurant(restaurant_uid)
    queryset = Order.objects.filter(restaurant=restaurant).select_related(
        'customer'
    ).prefetch_related('items').order_by('-created_at')

    if status:
        if status not in Order.Status.values:
            raise ValidationError(f"Unknown status '{status}'")
        queryset = queryset.filter(status=status)

    if limit is not None:
        try:
            limit = int(limit)
        except (TypeError, ValueError):
            raise ValidationError("limit must be a positive integer")
        if limit < 1:
            raise ValidationError("limit must be a positive integer")
        queryset = queryset[:limit]

    return queryset


# =============================================================================
# Restaurant actions
# =============================================================================

def _lock_restaurant_order(order_id, restaurant_uid) -> Order:
    order = lock_order(order_id)
    if order.restaurant.uid != (restaurant_uid or '').strip():
        raise NotFoundError(f"Order {order_id} not found for this restaurant")
    return order


def accept_order(order_id, restaurant_uid, scheduler=None) -> Order:
    """Restaurant accepts a pending order: pending -> preparing."""
    scheduler = scheduler or get_scheduler()

    with transaction.atomic():
        order = _lock_restaurant_order(order_id, restaurant_uid)
        if order.status != Order.Status.PENDING:
            raise InvalidTransition(str(order.status), Order.Status.PREPARING.value)

        scheduler.cancel_order(order.id)
        previous = apply_transition(order, Order.Status.PREPARING, Trigger.ACCEPT)
        emit_on_commit(order_status_changed, order, previous_status=previous)

    return order


def reject_order(order_id, restaurant_uid, reason, scheduler=None) -> Order:
    """Restaurant rejects a pending order with a reason: pending -> rejected."""
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationError("A rejection reason is required")
    scheduler = scheduler or get_scheduler()

    with transaction.atomic():
        order = _lock_restaurant_order(order_id, restaurant_uid)
        if order.status != Order.Status.PENDING:
            raise InvalidTransition(str(order.status), Order.Status.REJECTED.value)

        scheduler.cancel_order(order.id)
        previous = apply_transition(
            order, Order.Status.REJECTED, Trigger.REJECT,
            rejection_reason=reason.strip(),
            auto_rejected=False,
        )
        emit_on_commit(order_status_changed, order, previous_status=previous)

    # TODO: hand paid rejected orders to a refund workflow once one exists.
    logger.info(f"Order #{order.id} rejected by restaurant; refund pending")
    return order


def auto_reject_order(order_id) -> bool:
    """
    Response-window expiry. Rejects the order only if it is still pending.

    Returns:
        True if the order was rejected by this call
    """
    with transaction.atomic():
        try:
            order = lock_order(order_id)
        except NotFoundError:
            logger.error(f"Order #{order_id} not found for auto-reject")
            return False

        if order.status != Order.Status.PENDING:
            logger.info(f"Order #{order_id} is {order.status}, skipping auto-reject")
            return False

        previous = apply_transition(
            order, Order.Status.REJECTED, Trigger.REJECT,
            rejection_reason=AUTO_REJECT_REASON,
            auto_rejected=True,
        )
        emit_on_commit(order_status_changed, order, previous_status=previous)

    logger.warning(f"Order #{order_id} auto-rejected after response window; refund pending")
    return True


def update_order_status(order_id, new_status, scheduler=None) -> Order:
    """
    Generic status update: forward progression after acceptance, or
    administrative cancellation of any non-terminal order.

    Accept/reject are the only ways out of ``pending``; asking for
    ``preparing`` or ``rejected`` here raises InvalidTransition.
    """
    if new_status not in Order.Status.values:
        raise ValidationError(f"Invalid status '{new_status}'")
    scheduler = scheduler or get_scheduler()

    with transaction.atomic():
        order = lock_order(order_id)
        previous = apply_transition(order, new_status, Trigger.STATUS_UPDATE)
        if previous == Order.Status.PENDING:
            scheduler.cancel_order(order.id)
        emit_on_commit(order_status_changed, order, previous_status=previous)

    return order


def release_held_orders(restaurant, scheduler=None) -> int:
    """
    Hand orders held while ``restaurant`` was offline back to it, each with
    a fresh response window.

    Returns:
        Number of orders released
    """
    scheduler = scheduler or get_scheduler()
    held_ids = list(
        Order.objects.filter(
            restaurant=restaurant,
            status=Order.Status.PENDING_RESTAURANT_ONLINE,
        ).order_by('created_at').values_list('id', flat=True)
    )

    released = 0
    for order_id in held_ids:
        with transaction.atomic():
            order = lock_order(order_id)
            if order.status != Order.Status.PENDING_RESTAURANT_ONLINE:
                continue
            apply_transition(
                order, Order.Status.PENDING, Trigger.RESTAURANT_ONLINE,
                **_start_response_window(order, scheduler),
            )
            emit_on_commit(payment_confirmed, order)
            released += 1

    return released


def expire_overdue_orders(now=None, scheduler=None) -> int:
    """
    Auto-reject pending orders whose response deadline has passed and that
    have no live timer in this process (e.g. after a restart).

    Returns:
        Number of orders rejected
    """
    now = now or timezone.now()
    scheduler = scheduler or get_scheduler()

    overdue_ids = Order.objects.filter(
        status=Order.Status.PENDING,
        response_deadline__lte=now,
    ).values_list('id', flat=True)

    expired = 0
    for order_id in list(overdue_ids):
        if scheduler.is_scheduled(order_id):
            continue
        if auto_reject_order(order_id):
            expired += 1
    return expired
