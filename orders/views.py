"""
Order API Views.

Implements:
- GET  /orders/?customer_uid= - List a customer's orders
- POST /orders/ - Create order and open a payment session
- GET  /orders/{id}/ - Order detail with items
- GET  /orders/{id}/status/ - Order and payment status
- PUT  /orders/{id}/status/ - Generic status update
- POST /orders/{id}/verify-payment/ - Client-initiated payment check
- POST /orders/{id}/accept/ - Restaurant accepts
- POST /orders/{id}/reject/ - Restaurant rejects
- GET  /restaurants/{uid}/orders/ - Restaurant's orders
- POST /payments/webhook/ - Payment gateway webhook

Service errors propagate to ``core.exceptions.envelope_exception_handler``.
"""
import base64
import hashlib
import hmac
import json
import logging

from django.conf import settings
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import AmountMismatch, PaymentGatewayError, ValidationError, error_body
from core.rate_limiting import rate_limit
from . import services
from .reconciliation import Outcome, ReconciliationEngine
from .serializers import (
    OrderSerializer,
    OrderCreateSerializer,
    OrderStatusUpdateSerializer,
    OrderAcceptSerializer,
    OrderRejectSerializer,
)

logger = logging.getLogger(__name__)


def success(data=None, message=None, status_code=status.HTTP_200_OK):
    body = {'success': True}
    if message:
        body['message'] = message
    if data is not None:
        body['data'] = data
    return Response(body, status=status_code)


class OrderListCreateView(APIView):
    """
    GET: List a customer's orders
    POST: Create an order in payment_pending and return the payment session

    Query Parameters (GET):
        - customer_uid: Required
    """

    def get(self, request):
        customer_uid = request.query_params.get('customer_uid')
        if not customer_uid:
            raise ValidationError('Customer UID is required')

        orders = services.list_orders_for_customer(customer_uid)
        return success({'orders': OrderSerializer(orders, many=True).data})

    @rate_limit(20, 60)
    def post(self, request):
        """
        Returns:
            - 201: Order created, proceed to payment
            - 400: Validation error or price mismatch
            - 404: Restaurant or customer not found
            - 409: Menu item unavailable
            - 502: Payment gateway unavailable (order kept as cancelled)
        """
        serializer = OrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            order, priced = services.create_order(serializer.validated_data)
        except PaymentGatewayError as e:
            body = error_body(e.kind, e.message, e.details)
            body['message'] = 'Payment processing unavailable. Please try again.'
            return Response(body, status=e.status_code)

        return success(
            {
                'order_id': order.id,
                'payment_session_id': order.payment_session_id,
                'total_amount': str(order.total_price),
                'breakdown': priced.breakdown.as_dict(),
            },
            message='Order created, proceed to payment',
            status_code=status.HTTP_201_CREATED,
        )


class OrderDetailView(APIView):
    """GET: Retrieve order details with all items."""

    def get(self, request, pk):
        order = services.get_order(pk)
        return success({'order': OrderSerializer(order).data})


class OrderStatusView(APIView):
    """
    GET: Current order and payment status
    PUT: Generic status update (forward progression or cancellation)

    Request Body (PUT):
    {
        "status": "ready"
    }
    """

    def get(self, request, pk):
        return success(services.get_order_status(pk))

    def put(self, request, pk):
        serializer = OrderStatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = services.update_order_status(pk, serializer.validated_data['status'])
        return success({'order': OrderSerializer(order).data}, message='Status updated')


class VerifyPaymentView(APIView):
    """
    POST: Ask the gateway whether this order has been paid.

    A paid amount that disagrees with the order total cancels the order and
    answers 409.
    """

    @rate_limit(30, 60)
    def post(self, request, pk):
        result = ReconciliationEngine().verify_payment(pk)
        if result.outcome == Outcome.AMOUNT_MISMATCH:
            raise AmountMismatch(result.message, details=result.as_dict())
        return Response({
            'success': result.success,
            'message': result.message,
            'data': result.as_dict(),
        })


class OrderAcceptView(APIView):
    """POST: Restaurant accepts a pending order."""

    def post(self, request, pk):
        serializer = OrderAcceptSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = services.accept_order(pk, serializer.validated_data['restaurant_uid'])
        return success({'order': OrderSerializer(order).data}, message='Order accepted')


class OrderRejectView(APIView):
    """POST: Restaurant rejects a pending order with a reason."""

    def post(self, request, pk):
        serializer = OrderRejectSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = services.reject_order(
            pk,
            serializer.validated_data['restaurant_uid'],
            serializer.validated_data['reason'],
        )
        return success({'order': OrderSerializer(order).data}, message='Order rejected')


class RestaurantOrderListView(APIView):
    """
    GET: Orders for a restaurant, newest first.

    Query Parameters:
        - status: Filter by order status
        - limit: Maximum number of orders
    """

    def get(self, request, uid):
        orders = services.list_orders_for_restaurant(
            uid,
            status=request.query_params.get('status'),
            limit=request.query_params.get('limit'),
        )
        return success({'orders': OrderSerializer(orders, many=True).data})


def verify_webhook_signature(raw_body: bytes, timestamp: str, signature: str) -> bool:
    """base64(HMAC-SHA256(secret, timestamp + raw body)) must equal the header."""
    secret = settings.PAYMENT_WEBHOOK_SECRET
    if not secret:
        return True
    if not timestamp or not signature:
        return False
    digest = hmac.new(
        secret.encode(),
        timestamp.encode() + raw_body,
        hashlib.sha256,
    ).digest()
    return hmac.compare_digest(base64.b64encode(digest).decode(), signature)


def parse_raw_payload(raw_body: bytes):
    """Decode a webhook body sent with a missing or unexpected content type."""
    try:
        return json.loads(raw_body.decode('utf-8'))
    except ValueError:
        return None


class PaymentWebhookView(APIView):
    """
    POST: Payment event pushed by the gateway. Always answers 200 so the
    gateway stops retrying; processing failures are only logged.
    GET: Liveness check for the webhook URL.
    """

    def get(self, request):
        return success(message='Payment webhook endpoint is active')

    def post(self, request):
        raw_body = request.body
        logger.info(f"Payment webhook received ({len(raw_body)} bytes)")

        if not verify_webhook_signature(
            raw_body,
            request.headers.get('x-webhook-timestamp', ''),
            request.headers.get('x-webhook-signature', ''),
        ):
            logger.warning("Payment webhook signature verification failed, ignoring")
            return Response({'success': False, 'message': 'Invalid signature'})

        try:
            payload = request.data
        except APIException as e:
            logger.warning(f"Webhook body not parsed by content type ({e}), reading it as raw JSON")
            payload = None

        if not payload and raw_body.strip():
            payload = parse_raw_payload(raw_body)
            if payload is None:
                logger.error("Unparseable webhook body, acknowledging without processing")
                return Response({'success': False, 'message': 'Webhook received but payload unreadable'})

        result = ReconciliationEngine().handle_webhook(payload)
        return Response({
            'success': 'error' not in result.details,
            'message': result.message,
            'data': result.as_dict(),
        })
