"""
HTTP client for the payment gateway (Cashfree PG REST API).

Only two calls are needed: open a payment session for an order, and list
the payment attempts the gateway recorded against it.
"""
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

import requests
from django.conf import settings

from core.exceptions import PaymentGatewayError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentSession:
    session_id: str
    gateway_order_id: str


@dataclass(frozen=True)
class PaymentAttempt:
    """One attempt as the gateway reported it. ``amount`` is left unparsed."""
    status: str
    amount: Any
    time: Optional[str] = None


def payment_reference_for(order) -> str:
    """Merchant-side reference the gateway knows this order by."""
    return f"{settings.PAYMENT_ORDER_REFERENCE_PREFIX}{order.id}"


class PaymentGatewayClient:
    """Client for the payment gateway API"""

    def __init__(self, base_url=None, client_id=None, client_secret=None, timeout=None):
        self.base_url = (base_url or settings.PAYMENT_GATEWAY_BASE_URL).rstrip('/')
        self.client_id = client_id if client_id is not None else settings.PAYMENT_GATEWAY_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else settings.PAYMENT_GATEWAY_CLIENT_SECRET
        self.timeout = timeout or settings.PAYMENT_GATEWAY_TIMEOUT
        self.session = requests.Session()

    def _headers(self):
        return {
            'x-api-version': settings.PAYMENT_GATEWAY_API_VERSION,
            'x-client-id': self.client_id,
            'x-client-secret': self.client_secret,
            'Content-Type': 'application/json',
        }

    def _request(self, method, path, **kwargs):
        url = f"{self.base_url}{path}"
        logger.info(f"Calling payment gateway: {method} {url}")
        try:
            response = self.session.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            logger.error(f"Payment gateway unreachable: {e}")
            raise PaymentGatewayError(f"Payment gateway unreachable: {e}") from e

        if response.status_code >= 400:
            try:
                message = response.json().get('message', response.text)
            except ValueError:
                message = response.text
            logger.error(f"Payment gateway error {response.status_code}: {message}")
            raise PaymentGatewayError(
                'Payment processing unavailable. Please try again.',
                details={'gateway_status': response.status_code, 'gateway_message': message},
            )

        try:
            return response.json()
        except ValueError as e:
            raise PaymentGatewayError('Payment gateway returned an unreadable response') from e

    def create_session(self, order, customer) -> PaymentSession:
        """
        Open a payment session for ``order``.

        Returns:
            PaymentSession with the session id the app uses to start checkout
            and the gateway's own order id
        """
        data = self._request('POST', '/orders', json={
            'order_id': order.payment_reference or payment_reference_for(order),
            'order_amount': float(order.total_price),
            'order_currency': settings.PAYMENT_GATEWAY_CURRENCY,
            'customer_details': {
                'customer_id': customer.uid,
                'customer_name': order.customer_name,
                'customer_phone': order.phone_number,
                'customer_email': customer.email or 'customer@example.com',
            },
            'order_meta': {
                'return_url': settings.PAYMENT_RETURN_URL.format(order_id=order.id),
                'notify_url': settings.PAYMENT_NOTIFY_URL,
            },
            'order_note': order.notes or 'Food order',
        })

        session_id = data.get('payment_session_id')
        if not session_id:
            raise PaymentGatewayError('Payment gateway did not return a payment session')
        return PaymentSession(
            session_id=session_id,
            gateway_order_id=str(data.get('cf_order_id', '')),
        )

    def fetch_payment_attempts(self, order_reference: str) -> List[PaymentAttempt]:
        """List payment attempts recorded for the order. Read-only."""
        data = self._request('GET', f'/orders/{order_reference}/payments')
        attempts = []
        for record in data or []:
            attempts.append(PaymentAttempt(
                status=str(record.get('payment_status', '')).upper(),
                amount=record.get('payment_amount'),
                time=record.get('payment_time'),
            ))
        return attempts
