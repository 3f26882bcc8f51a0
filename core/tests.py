"""
Tests for shared infrastructure: error envelope, realtime publishing, push client.
"""
import json
from unittest.mock import MagicMock, patch

import redis
import requests
from django.test import RequestFactory, SimpleTestCase, override_settings

from core import realtime
from core.exceptions import InvalidTransition, NotFoundError, envelope_exception_handler
from core.push import PushClient, PushDeliveryError
from core.rate_limiting import get_client_ip


class EnvelopeExceptionHandlerTestCase(SimpleTestCase):

    def test_service_error_envelope(self):
        response = envelope_exception_handler(NotFoundError('Order 5 not found'), {})

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data, {
            'success': False,
            'error': 'not_found',
            'message': 'Order 5 not found',
        })

    def test_invalid_transition_carries_states(self):
        response = envelope_exception_handler(InvalidTransition('pending', 'delivered'), {})

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data['details'], {
            'current_status': 'pending',
            'requested_status': 'delivered',
        })

    def test_unhandled_exception_falls_through(self):
        self.assertIsNone(envelope_exception_handler(RuntimeError('boom'), {}))


@override_settings(REALTIME_ENABLED=True)
class RealtimePublishTestCase(SimpleTestCase):

    @patch('core.realtime.get_redis')
    def test_publish_to_restaurant_channel(self, mock_get_redis):
        mock_get_redis.return_value.publish.return_value = 1

        sent = realtime.publish(realtime.restaurant_channel('rest-1'), 'newOrder', {'id': 5})

        self.assertTrue(sent)
        channel, message = mock_get_redis.return_value.publish.call_args.args
        self.assertEqual(channel, 'restaurant:rest-1')
        self.assertEqual(json.loads(message), {'event': 'newOrder', 'data': {'id': 5}})

    @patch('core.realtime.get_redis')
    def test_redis_failure_is_swallowed(self, mock_get_redis):
        mock_get_redis.return_value.publish.side_effect = redis.ConnectionError('refused')

        with self.assertLogs('core.realtime', level='ERROR'):
            sent = realtime.publish(realtime.customer_channel('cust-1'), 'orderStatusUpdated', {})

        self.assertFalse(sent)

    @override_settings(REALTIME_ENABLED=False)
    @patch('core.realtime.get_redis')
    def test_disabled(self, mock_get_redis):
        self.assertFalse(realtime.publish('customer:cust-1', 'orderStatusUpdated', {}))
        mock_get_redis.assert_not_called()


class PushClientTestCase(SimpleTestCase):

    def setUp(self):
        self.client = PushClient(api_url='https://push.example.com/send', server_key='k', timeout=1)

    @patch('core.push.requests.post')
    def test_results_are_matched_to_tokens(self, mock_post):
        mock_post.return_value = MagicMock(**{
            'json.return_value': {'results': [
                {'message_id': '1'},
                {'error': 'InvalidRegistration'},
                {'error': 'Unavailable'},
            ]},
        })

        result = self.client.send(['a', 'b', 'c'], 'Title', 'Body', {'n': 1})

        self.assertEqual(result.sent, 1)
        self.assertEqual(result.failed, 2)
        self.assertEqual(result.invalid_tokens, ['b'])

    @patch('core.push.requests.post')
    def test_http_error_raises(self, mock_post):
        mock_post.return_value.raise_for_status.side_effect = requests.HTTPError('401')

        with self.assertRaises(PushDeliveryError):
            self.client.send(['a'], 'Title', 'Body', {})

    @patch('core.push.requests.post')
    def test_no_tokens(self, mock_post):
        result = self.client.send([], 'Title', 'Body', {})

        self.assertEqual(result.sent, 0)
        mock_post.assert_not_called()


class ClientIPTestCase(SimpleTestCase):

    def test_forwarded_for_wins(self):
        request = RequestFactory().get('/', HTTP_X_FORWARDED_FOR='203.0.113.9, 10.0.0.1')
        self.assertEqual(get_client_ip(request), '203.0.113.9')

    def test_remote_addr(self):
        request = RequestFactory().get('/')
        self.assertEqual(get_client_ip(request), '127.0.0.1')
