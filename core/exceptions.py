"""
Error taxonomy shared by the order workflow and the API envelope.

Every service-level failure carries a machine-readable ``kind`` and the HTTP
status it is surfaced with. ``envelope_exception_handler`` is installed as the
DRF exception handler so views can simply let these propagate.
"""
import logging

from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base class for failures surfaced to API clients."""
    kind = 'service_error'
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message='', details=None):
        self.message = message or self.__class__.__doc__ or self.kind
        self.details = details
        super().__init__(self.message)


class ValidationError(ServiceError):
    """Request payload has the wrong shape or values."""
    kind = 'validation_error'
    status_code = status.HTTP_400_BAD_REQUEST


class PriceMismatch(ServiceError):
    """Declared prices differ from the server-side recomputation."""
    kind = 'price_mismatch'
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(ServiceError):
    """Order, restaurant, customer or menu item does not exist."""
    kind = 'not_found'
    status_code = status.HTTP_404_NOT_FOUND


class ItemUnavailable(ServiceError):
    """A referenced menu item is missing, unavailable or deleted."""
    kind = 'item_unavailable'
    status_code = status.HTTP_409_CONFLICT


class InvalidTransition(ServiceError):
    """The requested status change is not allowed from the current state."""
    kind = 'invalid_transition'
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, current, requested, message=''):
        self.current = current
        self.requested = requested
        super().__init__(
            message or f"Cannot move order from '{current}' to '{requested}'",
            details={'current_status': current, 'requested_status': requested},
        )


class PaymentGatewayError(ServiceError):
    """The external payment gateway failed or returned an error."""
    kind = 'payment_gateway_error'
    status_code = status.HTTP_502_BAD_GATEWAY


class AmountMismatch(ServiceError):
    """Settled payment amount does not match the order total."""
    kind = 'amount_mismatch'
    status_code = status.HTTP_409_CONFLICT


def error_body(kind, message, details=None):
    body = {'success': False, 'error': kind, 'message': message}
    if details:
        body['details'] = details
    return body


def envelope_exception_handler(exc, context):
    """
    Render service errors and DRF errors in the shared failure envelope.

    Anything that is neither falls through to DRF (and then Django) as usual.
    """
    if isinstance(exc, ServiceError):
        return Response(
            error_body(exc.kind, exc.message, exc.details),
            status=exc.status_code,
        )

    response = exception_handler(exc, context)
    if response is None:
        return None

    if isinstance(exc, drf_exceptions.ValidationError):
        response.data = error_body('validation_error', 'Invalid request payload', response.data)
    elif isinstance(exc, drf_exceptions.NotFound):
        response.data = error_body('not_found', str(exc.detail))
    else:
        response.data = error_body(
            getattr(exc, 'default_code', 'error'),
            str(getattr(exc, 'detail', exc)),
        )
    return response
