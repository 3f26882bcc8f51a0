"""
Order Models - Order and OrderItem entities with lifecycle tracking.

Order Status Flow:
    PAYMENT_PENDING -> PENDING (payment confirmed, restaurant reachable)
    PAYMENT_PENDING -> PENDING_RESTAURANT_ONLINE (payment confirmed, restaurant offline)
    PAYMENT_PENDING -> CANCELLED (payment failed / gateway error)
    PENDING_RESTAURANT_ONLINE -> PENDING (restaurant came online)
    PENDING -> PREPARING (restaurant accept)
    PENDING -> REJECTED (restaurant reject or response window expiry)
    PREPARING -> READY -> ON_THE_WAY -> DELIVERED
    any non-terminal -> CANCELLED (administrative)
"""
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models

from restaurants.models import Restaurant, Customer, MenuItem


class Trigger:
    """What caused a status change. Each transition is only reachable via its trigger."""
    PAYMENT = 'payment'
    RESTAURANT_ONLINE = 'restaurant_online'
    ACCEPT = 'accept'
    REJECT = 'reject'
    STATUS_UPDATE = 'status_update'


class Order(models.Model):
    """
    One customer purchase from one restaurant.

    Customer name and phone are snapshots taken at creation. ``status`` is
    the lifecycle; ``payment_status`` tracks the gateway settlement.
    """

    class Status(models.TextChoices):
        PAYMENT_PENDING = 'payment_pending', 'Payment pending'
        PENDING_RESTAURANT_ONLINE = 'pending_restaurant_online', 'Waiting for restaurant'
        PENDING = 'pending', 'Pending'
        PREPARING = 'preparing', 'Preparing'
        READY = 'ready', 'Ready'
        ON_THE_WAY = 'on_the_way', 'On the way'
        DELIVERED = 'delivered', 'Delivered'
        CANCELLED = 'cancelled', 'Cancelled'
        REJECTED = 'rejected', 'Rejected'

    class PaymentStatus(models.TextChoices):
        PENDING = 'pending', 'Pending'
        SUCCESS = 'success', 'Success'
        FAILED = 'failed', 'Failed'
        CANCELLED = 'cancelled', 'Cancelled'

    class LocationAccuracy(models.TextChoices):
        COORDINATES = 'coordinates', 'Coordinates'
        ADDRESS_ONLY = 'address_only', 'Address only'

    TERMINAL_STATUSES = frozenset({
        Status.DELIVERED.value, Status.CANCELLED.value, Status.REJECTED.value,
    })

    # (from, to) -> trigger that may perform it
    TRANSITIONS = {
        (Status.PAYMENT_PENDING.value, Status.PENDING.value): Trigger.PAYMENT,
        (Status.PAYMENT_PENDING.value, Status.PENDING_RESTAURANT_ONLINE.value): Trigger.PAYMENT,
        (Status.PAYMENT_PENDING.value, Status.CANCELLED.value): Trigger.PAYMENT,
        (Status.PENDING_RESTAURANT_ONLINE.value, Status.PENDING.value): Trigger.RESTAURANT_ONLINE,
        (Status.PENDING.value, Status.PREPARING.value): Trigger.ACCEPT,
        (Status.PENDING.value, Status.REJECTED.value): Trigger.REJECT,
        (Status.PREPARING.value, Status.READY.value): Trigger.STATUS_UPDATE,
        (Status.READY.value, Status.ON_THE_WAY.value): Trigger.STATUS_UPDATE,
        (Status.ON_THE_WAY.value, Status.DELIVERED.value): Trigger.STATUS_UPDATE,
    }

    restaurant = models.ForeignKey(
        Restaurant,
        on_delete=models.PROTECT,
        related_name='orders'
    )
    customer = models.ForeignKey(
        Customer,
        on_delete=models.PROTECT,
        related_name='orders'
    )
    customer_name = models.CharField(max_length=255)
    phone_number = models.CharField(max_length=20)
    delivery_address = models.TextField()
    latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    location_accuracy = models.CharField(
        max_length=20,
        choices=LocationAccuracy.choices,
        default=LocationAccuracy.ADDRESS_ONLY
    )
    payment_method = models.CharField(max_length=50)
    notes = models.TextField(blank=True, default='')
    total_price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        help_text="Server-computed total including fees"
    )
    status = models.CharField(
        max_length=32,
        choices=Status.choices,
        default=Status.PAYMENT_PENDING,
        db_index=True
    )
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
        db_index=True
    )
    payment_reference = models.CharField(
        max_length=64,
        blank=True,
        default='',
        db_index=True,
        help_text="Merchant order reference sent to the gateway"
    )
    gateway_order_id = models.CharField(max_length=255, blank=True, default='')
    payment_session_id = models.CharField(max_length=255, blank=True, default='')
    response_deadline = models.DateTimeField(null=True, blank=True, db_index=True)
    rejection_reason = models.TextField(blank=True, default='')
    auto_rejected = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['restaurant', 'status']),
            models.Index(fields=['customer', 'created_at']),
            models.Index(fields=['status', 'response_deadline']),
        ]

    def __str__(self):
        return f"Order #{self.id} - {self.restaurant_id} ({self.status}/{self.payment_status})"

    @property
    def is_terminal(self) -> bool:
        # Enum members hash by name, so compare on the plain value.
        return str(self.status) in self.TERMINAL_STATUSES

    @property
    def is_payment_settled(self) -> bool:
        return self.payment_status != self.PaymentStatus.PENDING

    def can_transition(self, new_status, trigger) -> bool:
        new_status = str(new_status)
        if new_status == self.Status.CANCELLED and trigger == Trigger.STATUS_UPDATE:
            return not self.is_terminal
        return self.TRANSITIONS.get((str(self.status), new_status)) == trigger


class OrderItem(models.Model):
    """
    Line item on an order.

    Name and unit price are snapshots taken at creation so later menu edits
    do not change historical orders.
    """
    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name='items'
    )
    menu_item = models.ForeignKey(
        MenuItem,
        on_delete=models.PROTECT,
        related_name='order_items'
    )
    item_name = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    unit_price = models.DecimalField(max_digits=10, decimal_places=2)

    class Meta:
        ordering = ['id']

    def __str__(self):
        return f"{self.quantity}x {self.item_name} @ ₹{self.unit_price}"

    @property
    def subtotal(self) -> Decimal:
        return self.quantity * self.unit_price
