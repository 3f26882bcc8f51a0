"""
Payment reconciliation.

A payment can be confirmed along two independent paths that may race:

    - verify_payment: the customer app asks us to check with the gateway
    - handle_webhook: the gateway pushes a payment event to us

Both reduce their input to a ``Settlement`` and funnel into ``_settle``,
which locks the order row and re-checks ``payment_status`` before writing.
Whichever path gets there first performs the one transition; the other
sees the settled status and short-circuits as already processed, so the
restaurant is notified exactly once.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import transaction

from core.exceptions import NotFoundError, ValidationError
from .models import Order
from .payments import PaymentAttempt, PaymentGatewayClient
from .scheduler import get_scheduler
from .services import confirm_paid_order, fail_payment, get_order, lock_order

logger = logging.getLogger(__name__)


class Outcome:
    CONFIRMED = 'confirmed'
    HELD = 'held'
    ALREADY_PROCESSED = 'already_processed'
    FAILED = 'failed'
    AMOUNT_MISMATCH = 'amount_mismatch'
    NOT_SETTLED = 'not_settled'
    IGNORED = 'ignored'


SUCCESS_OUTCOMES = {Outcome.CONFIRMED, Outcome.HELD}

# Gateway status -> local payment status. Anything unlisted is not a settlement.
GATEWAY_STATUS_MAP = {
    'SUCCESS': Order.PaymentStatus.SUCCESS,
    'PAID': Order.PaymentStatus.SUCCESS,
    'FAILED': Order.PaymentStatus.FAILED,
    'CANCELLED': Order.PaymentStatus.CANCELLED,
    'USER_DROPPED': Order.PaymentStatus.CANCELLED,
}


@dataclass(frozen=True)
class Settlement:
    """
    A terminal payment result from either path.

    ``reported_amount`` is the amount exactly as the gateway sent it, None
    only when no amount was sent at all.
    """
    payment_status: str
    reported_amount: Any = None
    source: str = ''

    @property
    def amount(self) -> Optional[Decimal]:
        return parse_amount(self.reported_amount)


@dataclass
class ReconciliationResult:
    outcome: str
    message: str
    order: Optional[Order] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        if self.outcome == Outcome.ALREADY_PROCESSED:
            return self.order.payment_status == Order.PaymentStatus.SUCCESS
        return self.outcome in SUCCESS_OUTCOMES

    def as_dict(self) -> Dict[str, Any]:
        data = {'outcome': self.outcome, **self.details}
        if self.order is not None:
            data.update({
                'order_id': self.order.id,
                'order_status': self.order.status,
                'payment_status': self.order.payment_status,
            })
        return data


# =============================================================================
# Webhook payload extraction
# =============================================================================

@dataclass(frozen=True)
class WebhookEvent:
    order_id: Optional[int]
    gateway_status: Optional[str]
    reported_amount: Any = None

    @property
    def amount(self) -> Optional[Decimal]:
        return parse_amount(self.reported_amount)


def _dig(payload, path):
    node = payload
    for key in path:
        if not isinstance(node, dict) or key not in node:
            return None
        node = node[key]
    return node


def first_match(payload: Dict, paths: List[List[str]]):
    """Value at the first key path present (and non-empty) in ``payload``."""
    for path in paths:
        value = _dig(payload, path)
        if value not in (None, ''):
            return value
    return None


def parse_order_reference(value) -> Optional[int]:
    """``order_42`` (or ``42``) -> 42."""
    if value is None:
        return None
    text = str(value).strip()
    prefix = settings.PAYMENT_ORDER_REFERENCE_PREFIX
    if text.startswith(prefix):
        text = text[len(prefix):]
    try:
        return int(text)
    except ValueError:
        return None


def parse_amount(value) -> Optional[Decimal]:
    """Finite decimal amount, or None when ``value`` is missing or not a number."""
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def extract_webhook_event(payload: Dict, field_paths: Optional[Dict] = None) -> WebhookEvent:
    field_paths = field_paths or settings.PAYMENT_WEBHOOK_FIELD_PATHS
    status = first_match(payload, field_paths['status'])
    return WebhookEvent(
        order_id=parse_order_reference(first_match(payload, field_paths['order_id'])),
        gateway_status=str(status).upper() if status is not None else None,
        reported_amount=first_match(payload, field_paths['amount']),
    )


def amount_matches(paid: Optional[Decimal], expected: Decimal) -> bool:
    """An unreadable amount never matches."""
    if paid is None:
        return False
    return abs(paid - expected) <= settings.PAYMENT_AMOUNT_TOLERANCE


def is_success_status(gateway_status) -> bool:
    return GATEWAY_STATUS_MAP.get(gateway_status) == Order.PaymentStatus.SUCCESS


def settlement_from_attempts(attempts: List[PaymentAttempt]) -> Optional[Settlement]:
    """
    Reduce the gateway's attempt list to a settlement.

    A successful attempt wins, whatever its position, and brings its amount
    along for the amount check. Failure is only final once every attempt has
    reached a terminal status; pending attempts or an empty list mean the
    customer has not finished paying.
    """
    for attempt in attempts:
        if is_success_status(attempt.status):
            return Settlement(Order.PaymentStatus.SUCCESS, attempt.amount, source='verify')

    if attempts and all(a.status in GATEWAY_STATUS_MAP for a in attempts):
        return Settlement(GATEWAY_STATUS_MAP[attempts[-1].status], source='verify')
    return None


# =============================================================================
# Engine
# =============================================================================

class ReconciliationEngine:

    def __init__(self, gateway=None, scheduler=None, field_paths=None):
        self.gateway = gateway or PaymentGatewayClient()
        self.scheduler = scheduler or get_scheduler()
        self.field_paths = field_paths

    def verify_payment(self, order_id) -> ReconciliationResult:
        """
        Client-initiated check: poll the gateway and settle the order.

        Raises:
            NotFoundError: Unknown order
            PaymentGatewayError: Gateway could not be queried (no mutation)
        """
        order = get_order(order_id)
        if order.is_payment_settled:
            return self._already_processed(order)

        if not order.payment_reference:
            raise ValidationError(f"Order {order.id} has no payment session")

        attempts = self.gateway.fetch_payment_attempts(order.payment_reference)
        settlement = settlement_from_attempts(attempts)
        if settlement is None:
            logger.info(f"Order #{order.id}: payment not completed yet ({len(attempts)} attempts)")
            return ReconciliationResult(Outcome.NOT_SETTLED, 'Payment not completed', order)

        return self._settle(order.id, settlement)

    def handle_webhook(self, payload) -> ReconciliationResult:
        """
        Gateway-pushed payment event. Never raises: the gateway must always
        get an acknowledgement or it retries forever.
        """
        try:
            return self._handle_webhook(payload)
        except Exception as e:
            logger.exception(f"Webhook processing failed: {e}")
            return ReconciliationResult(
                Outcome.IGNORED, 'Webhook received but processing failed',
                details={'error': str(e)},
            )

    def _handle_webhook(self, payload) -> ReconciliationResult:
        if not payload:
            logger.info("Empty webhook payload, treating as connectivity test")
            return ReconciliationResult(Outcome.IGNORED, 'Webhook endpoint is working')
        if not isinstance(payload, dict):
            logger.error(f"Webhook payload is not an object: {type(payload).__name__}")
            return ReconciliationResult(Outcome.IGNORED, 'Unrecognised webhook payload')

        event = extract_webhook_event(payload, self.field_paths)
        logger.info(
            f"Webhook extracted: order={event.order_id} status={event.gateway_status} amount={event.reported_amount!r}"
        )

        if event.order_id is None:
            logger.error("No order id found in webhook payload")
            return ReconciliationResult(Outcome.IGNORED, 'No order ID found')

        payment_status = GATEWAY_STATUS_MAP.get(event.gateway_status)
        if payment_status is None:
            logger.info(f"Webhook for order #{event.order_id} is not a settlement ({event.gateway_status})")
            return ReconciliationResult(
                Outcome.NOT_SETTLED, 'Payment not settled',
                details={'order_id': event.order_id},
            )

        try:
            return self._settle(
                event.order_id,
                Settlement(payment_status, event.reported_amount, source='webhook'),
            )
        except NotFoundError:
            logger.warning(f"Webhook for unknown order #{event.order_id}")
            return ReconciliationResult(
                Outcome.IGNORED, 'Order not found',
                details={'order_id': event.order_id},
            )

    def _settle(self, order_id, settlement: Settlement) -> ReconciliationResult:
        with transaction.atomic():
            order = lock_order(order_id)

            if order.is_payment_settled:
                return self._already_processed(order)

            if order.status != Order.Status.PAYMENT_PENDING:
                logger.warning(
                    f"Order #{order.id} is {order.status} with payment still pending; "
                    f"ignoring {settlement.source} settlement {settlement.payment_status}"
                )
                return ReconciliationResult(Outcome.IGNORED, 'Order is no longer awaiting payment', order)

            if settlement.payment_status != Order.PaymentStatus.SUCCESS:
                fail_payment(order, settlement.payment_status)
                logger.info(f"Order #{order.id} payment {settlement.payment_status} via {settlement.source}")
                return ReconciliationResult(Outcome.FAILED, 'Payment failed', order)

            if settlement.reported_amount is not None and not amount_matches(settlement.amount, order.total_price):
                fail_payment(order)
                logger.error(
                    f"Amount mismatch on order #{order.id} via {settlement.source}: "
                    f"paid {settlement.reported_amount!r}, expected ₹{order.total_price}; order cancelled"
                )
                return ReconciliationResult(
                    Outcome.AMOUNT_MISMATCH, 'Payment amount does not match order total', order,
                    details={
                        'paid_amount': str(settlement.reported_amount),
                        'expected_amount': str(order.total_price),
                    },
                )

            new_status = confirm_paid_order(order, self.scheduler)

        logger.info(f"Order #{order.id} payment confirmed via {settlement.source} -> {new_status}")
        if new_status == Order.Status.PENDING_RESTAURANT_ONLINE:
            return ReconciliationResult(Outcome.HELD, 'Payment verified, waiting for restaurant to come online', order)
        return ReconciliationResult(Outcome.CONFIRMED, 'Payment verified successfully', order)

    def _already_processed(self, order) -> ReconciliationResult:
        logger.info(f"Order #{order.id} payment already {order.payment_status}, nothing to do")
        return ReconciliationResult(Outcome.ALREADY_PROCESSED, 'Payment already processed', order)
