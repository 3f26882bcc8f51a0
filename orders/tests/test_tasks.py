"""
Tests for Celery tasks and the notifier wiring.
"""
from datetime import timedelta
from unittest.mock import MagicMock, patch

import requests
from django.test import TestCase, override_settings
from django.utils import timezone

from orders.models import Order
from orders.services import confirm_paid_order
from orders.tasks import expire_response_windows, send_push_notification
from orders.tests.factories import FakeScheduler, make_customer, make_order, make_restaurant
from restaurants.models import DeviceToken


def push_response(results):
    response = MagicMock()
    response.json.return_value = {'results': results}
    response.raise_for_status.return_value = None
    return response


@override_settings(PUSH_SERVER_KEY='server-key')
class SendPushNotificationTestCase(TestCase):

    def setUp(self):
        self.restaurant = make_restaurant()
        DeviceToken.objects.create(restaurant=self.restaurant, token='token-good', platform='android')
        DeviceToken.objects.create(restaurant=self.restaurant, token='token-stale', platform='ios')

    @patch('core.push.requests.post')
    def test_invalid_tokens_are_pruned(self, mock_post):
        """
        Given: Two registered devices, one of which was uninstalled
        When: Sending a push
        Then: One delivery, the stale token is removed, the good one is stamped
        """
        mock_post.return_value = push_response([{'message_id': 'm1'}, {'error': 'NotRegistered'}])

        result = send_push_notification(self.restaurant.uid, 'New order', 'Order #1', {'order_id': 1})

        self.assertEqual(result, {'status': 'success', 'sent': 1, 'failed': 1, 'pruned': 1})
        self.assertEqual(
            list(DeviceToken.objects.values_list('token', flat=True)),
            ['token-good'],
        )
        self.assertIsNotNone(DeviceToken.objects.get(token='token-good').last_used_at)

        payload = mock_post.call_args.kwargs['json']
        self.assertEqual(payload['registration_ids'], ['token-good', 'token-stale'])
        self.assertEqual(payload['data'], {'order_id': '1'})
        self.assertEqual(mock_post.call_args.kwargs['headers']['Authorization'], 'key=server-key')

    @patch('core.push.requests.post')
    def test_transient_errors_keep_tokens(self, mock_post):
        mock_post.return_value = push_response([{'error': 'Unavailable'}, {'error': 'Unavailable'}])

        result = send_push_notification(self.restaurant.uid, 'New order', 'Order #1', {})

        self.assertEqual(result['failed'], 2)
        self.assertEqual(DeviceToken.objects.count(), 2)

    @patch('core.push.requests.post')
    def test_delivery_failure_is_logged_not_raised(self, mock_post):
        mock_post.side_effect = requests.ConnectionError('no route to host')

        with self.assertLogs('orders.tasks', level='ERROR'):
            result = send_push_notification(self.restaurant.uid, 'New order', 'Order #1', {})

        self.assertEqual(result['status'], 'error')
        self.assertEqual(DeviceToken.objects.count(), 2)

    @patch('core.push.requests.post')
    def test_no_tokens_skips(self, mock_post):
        other = make_restaurant(uid='rest-2', name='Curry Leaf')

        result = send_push_notification(other.uid, 'New order', 'Order #1', {})

        self.assertEqual(result['status'], 'skipped')
        mock_post.assert_not_called()

    @override_settings(PUSH_SERVER_KEY='')
    @patch('core.push.requests.post')
    def test_unconfigured_push_sends_nothing(self, mock_post):
        result = send_push_notification(self.restaurant.uid, 'New order', 'Order #1', {})

        self.assertEqual(result['sent'], 0)
        mock_post.assert_not_called()

    @patch('core.push.requests.post')
    def test_payment_confirmation_pushes_to_restaurant(self, mock_post):
        """Confirmed payment reaches the restaurant's devices through the queued task."""
        mock_post.return_value = push_response([{'message_id': 'm1'}, {'message_id': 'm2'}])
        order = make_order(self.restaurant, make_customer())

        with self.captureOnCommitCallbacks(execute=True):
            confirm_paid_order(order, FakeScheduler())

        mock_post.assert_called_once()
        payload = mock_post.call_args.kwargs['json']
        self.assertEqual(payload['notification']['title'], 'New order received')
        self.assertEqual(payload['data']['type'], 'new_order')
        self.assertEqual(payload['data']['order_id'], str(order.id))


class ExpireResponseWindowsTestCase(TestCase):

    def setUp(self):
        self.restaurant = make_restaurant()
        self.customer = make_customer()
        self.scheduler = FakeScheduler()
        patcher = patch('orders.scheduler._scheduler', self.scheduler)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_sweep_rejects_expired_orders(self):
        expired = make_order(
            self.restaurant, self.customer,
            status=Order.Status.PENDING,
            payment_status=Order.PaymentStatus.SUCCESS,
            response_deadline=timezone.now() - timedelta(minutes=5),
        )
        fresh = make_order(
            self.restaurant, self.customer,
            status=Order.Status.PENDING,
            payment_status=Order.PaymentStatus.SUCCESS,
            response_deadline=timezone.now() + timedelta(minutes=1),
        )

        result = expire_response_windows()

        self.assertEqual(result, {'processed': 1})
        expired.refresh_from_db()
        fresh.refresh_from_db()
        self.assertEqual(expired.status, Order.Status.REJECTED)
        self.assertTrue(expired.auto_rejected)
        self.assertEqual(fresh.status, Order.Status.PENDING)

    def test_sweep_with_nothing_due(self):
        self.assertEqual(expire_response_windows(), {'processed': 0})
