"""
Restaurant-side models the order workflow reads from.

Models:
    - Restaurant: identified by an external auth UID, with online and
      notification preferences
    - Category: per-restaurant menu grouping
    - MenuItem: priced menu entry, soft-deletable
    - Customer: identified by an external auth UID
    - DeviceToken: push-notification registry for restaurant devices
"""
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models


class Restaurant(models.Model):
    """
    Restaurant owner account.

    ``is_online`` and ``notifications_enabled`` decide whether a paid order
    opens a response window straight away or waits for the restaurant.
    The verification fields track the admin review of submitted documents.
    """

    class VerificationStatus(models.TextChoices):
        PENDING = 'pending', 'Pending'
        VERIFIED = 'verified', 'Verified'
        REJECTED = 'rejected', 'Rejected'

    uid = models.CharField(
        max_length=255,
        unique=True,
        help_text="External auth UID"
    )
    name = models.CharField(max_length=255)
    location = models.CharField(max_length=255, blank=True, default='')
    email = models.EmailField(blank=True, default='')
    is_pure_veg = models.BooleanField(default=True)
    is_online = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether the restaurant is currently taking orders"
    )
    notifications_enabled = models.BooleanField(
        default=True,
        help_text="Whether the restaurant wants new-order notifications"
    )
    verification_status = models.CharField(
        max_length=20,
        choices=VerificationStatus.choices,
        default=VerificationStatus.PENDING,
        db_index=True
    )
    documents_submitted = models.BooleanField(default=False)
    submission_date = models.DateTimeField(null=True, blank=True)
    verification_date = models.DateTimeField(null=True, blank=True)
    verification_notes = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.uid})"

    @property
    def accepts_notifications(self) -> bool:
        return self.is_online and self.notifications_enabled

    @property
    def can_access_dashboard(self) -> bool:
        return self.verification_status == self.VerificationStatus.VERIFIED


class Category(models.Model):
    name = models.CharField(max_length=255)
    restaurant = models.ForeignKey(
        Restaurant,
        on_delete=models.CASCADE,
        related_name='categories'
    )

    class Meta:
        verbose_name_plural = 'Categories'
        ordering = ['name']
        constraints = [
            models.UniqueConstraint(
                fields=['restaurant', 'name'],
                name='unique_category_per_restaurant'
            )
        ]

    def __str__(self):
        return self.name


class MenuItem(models.Model):
    """
    Menu entry. Deleting is soft (``is_deleted``) because historical order
    lines keep referencing the row.
    """
    restaurant = models.ForeignKey(
        Restaurant,
        on_delete=models.CASCADE,
        related_name='menu_items'
    )
    category = models.ForeignKey(
        Category,
        on_delete=models.PROTECT,
        related_name='menu_items',
        null=True,
        blank=True
    )
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default='')
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.00'))]
    )
    is_available = models.BooleanField(default=True)
    is_deleted = models.BooleanField(default=False)
    is_veg = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name']
        indexes = [
            models.Index(fields=['restaurant', 'is_available', 'is_deleted']),
        ]

    def __str__(self):
        return f"{self.name} (₹{self.price})"

    @property
    def is_orderable(self) -> bool:
        return self.is_available and not self.is_deleted


class Customer(models.Model):
    uid = models.CharField(max_length=255, unique=True)
    name = models.CharField(max_length=255, blank=True, default='')
    phone = models.CharField(max_length=20, blank=True, default='')
    email = models.EmailField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.name or 'Customer'} ({self.uid})"


class DeviceToken(models.Model):
    """Push token registered by a restaurant device."""
    restaurant = models.ForeignKey(
        Restaurant,
        on_delete=models.CASCADE,
        related_name='device_tokens'
    )
    token = models.CharField(max_length=512, unique=True)
    platform = models.CharField(max_length=20, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    last_used_at = models.DateTimeField(null=True, blank=True)

    def __str__(self):
        return f"{self.restaurant.uid}: {self.token[:12]}..."
