"""
Restaurant services: lookups for the order workflow, online status and verification.

The order core only reads restaurant state. The writes here are the online
toggle, which also releases orders that were waiting for the restaurant to
come back, and the admin verification workflow.
"""
import logging

from django.db import transaction
from django.utils import timezone

from core import realtime
from core.exceptions import NotFoundError, ValidationError
from .models import Restaurant, Customer, MenuItem

logger = logging.getLogger(__name__)


def normalize_uid(uid) -> str:
    if not isinstance(uid, str) or not uid.strip():
        raise ValidationError("UID is required and must be a non-empty string")
    return uid.strip()


def get_restaurant(uid) -> Restaurant:
    uid = normalize_uid(uid)
    try:
        return Restaurant.objects.get(uid=uid)
    except Restaurant.DoesNotExist:
        raise NotFoundError(f"Restaurant not found for UID: {uid}")


def get_customer(uid) -> Customer:
    uid = normalize_uid(uid)
    try:
        return Customer.objects.get(uid=uid)
    except Customer.DoesNotExist:
        raise NotFoundError(f"Customer not found for UID: {uid}")


def orderable_menu_items(restaurant_uid: str):
    """Menu items that may appear on a new order for this restaurant."""
    return MenuItem.objects.filter(
        restaurant__uid=restaurant_uid,
        is_available=True,
        is_deleted=False,
    )


def get_menu_item(item_id, restaurant_uid: str):
    """
    Return the current menu row for ``item_id`` if it belongs to the
    restaurant and is orderable, otherwise None.
    """
    return orderable_menu_items(restaurant_uid).filter(id=item_id).first()


def set_restaurant_online(uid, is_online: bool) -> Restaurant:
    """
    Toggle a restaurant's online flag.

    Coming online hands every order held in ``pending_restaurant_online``
    back to the restaurant with a fresh response window.
    """
    restaurant = get_restaurant(uid)
    restaurant.is_online = bool(is_online)
    restaurant.save(update_fields=['is_online', 'updated_at'])
    logger.info(f"Restaurant {restaurant.uid} is now {'online' if restaurant.is_online else 'offline'}")

    if restaurant.accepts_notifications:
        from orders.services import release_held_orders
        released = release_held_orders(restaurant)
        if released:
            logger.info(f"Released {released} held orders to restaurant {restaurant.uid}")

    return restaurant


# =============================================================================
# Verification workflow
# =============================================================================

DECISION_STATUSES = {
    Restaurant.VerificationStatus.VERIFIED.value,
    Restaurant.VerificationStatus.REJECTED.value,
}


def record_documents_submitted(uid) -> Restaurant:
    """Mark the restaurant's verification documents as submitted."""
    restaurant = get_restaurant(uid)
    restaurant.documents_submitted = True
    restaurant.submission_date = timezone.now()
    restaurant.save(update_fields=['documents_submitted', 'submission_date', 'updated_at'])
    logger.info(f"Restaurant {restaurant.uid} submitted verification documents")
    return restaurant


def get_verification_status(uid) -> dict:
    restaurant = get_restaurant(uid)
    return {
        'verification_status': restaurant.verification_status,
        'documents_submitted': restaurant.documents_submitted,
        'verification_notes': restaurant.verification_notes,
        'verification_date': restaurant.verification_date,
        'submission_date': restaurant.submission_date,
        'can_access_dashboard': restaurant.can_access_dashboard,
    }


def list_pending_verification():
    """Restaurants with documents in and no decision yet, oldest submission first."""
    return Restaurant.objects.filter(
        documents_submitted=True,
        verification_status=Restaurant.VerificationStatus.PENDING,
    ).order_by('submission_date', 'id')


def list_restaurants_with_status(status=None):
    """
    All restaurants, newest first.

    ``status`` narrows the list when it names a verification status; any
    other value is ignored.
    """
    restaurants = Restaurant.objects.order_by('-created_at', '-id')
    if status in Restaurant.VerificationStatus.values:
        restaurants = restaurants.filter(verification_status=status)
    return restaurants


@transaction.atomic
def update_verification(uid, verification_status, notes=None) -> Restaurant:
    """
    Record an admin decision on a restaurant's documents.

    Args:
        uid: Restaurant UID
        verification_status: 'verified' or 'rejected'
        notes: Optional reviewer notes shown to the restaurant

    Raises:
        ValidationError: Unknown decision, or no documents submitted
        NotFoundError: Unknown restaurant
    """
    if verification_status not in DECISION_STATUSES:
        raise ValidationError('Invalid verification status. Must be "verified" or "rejected"')

    uid = normalize_uid(uid)
    try:
        restaurant = Restaurant.objects.select_for_update().get(uid=uid)
    except Restaurant.DoesNotExist:
        raise NotFoundError(f"Restaurant not found for UID: {uid}")

    if not restaurant.documents_submitted:
        raise ValidationError('Cannot verify restaurant without submitted documents')

    restaurant.verification_status = verification_status
    restaurant.verification_notes = notes or ''
    restaurant.verification_date = timezone.now()
    restaurant.save(update_fields=[
        'verification_status', 'verification_notes', 'verification_date', 'updated_at',
    ])
    logger.info(f"Restaurant {restaurant.uid} {verification_status} by admin review")

    event = {
        'status': restaurant.verification_status,
        'notes': restaurant.verification_notes,
        'date': restaurant.verification_date,
    }
    transaction.on_commit(lambda: realtime.publish(
        realtime.restaurant_channel(restaurant.uid), 'verificationStatusUpdated', event,
    ))
    return restaurant
