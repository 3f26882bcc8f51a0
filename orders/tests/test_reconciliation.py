"""
Tests for payment reconciliation.

Test Cases:
1. Client verify confirms a paid order exactly once
2. Webhook retries and verify/webhook races notify the restaurant once
3. Amount mismatch, including unreadable amounts, force-cancels without notifying
4. Offline restaurant holds the order without a response window
5. Webhook payload extraction across known shapes
6. Webhook handling never raises
7. A path that takes the lock second finds the order already settled
"""
import threading
from decimal import Decimal
from unittest import skipUnless
from unittest.mock import patch

from django.db import connection
from django.test import SimpleTestCase, TestCase, TransactionTestCase

from core.exceptions import NotFoundError, PaymentGatewayError, ValidationError
from orders.models import Order
from orders.payments import PaymentAttempt
from orders.services import lock_order
from orders.reconciliation import (
    Outcome,
    ReconciliationEngine,
    extract_webhook_event,
    parse_amount,
    parse_order_reference,
    settlement_from_attempts,
)
from orders.tests.factories import (
    FakeScheduler,
    fake_gateway,
    make_customer,
    make_menu_item,
    make_order,
    make_restaurant,
    success_attempt,
    webhook_payload,
)


def published_events(mock_publish, event):
    return [c for c in mock_publish.call_args_list if c.args[1] == event]


class ReconciliationTestMixin:

    def setUp(self):
        self.restaurant = make_restaurant()
        self.customer = make_customer()
        self.item = make_menu_item(self.restaurant, price='240.00')
        self.order = make_order(self.restaurant, self.customer, self.item, quantity=2, total_price='529.00')
        self.scheduler = FakeScheduler()
        self.gateway = fake_gateway([success_attempt('529.00')])
        self.engine = ReconciliationEngine(gateway=self.gateway, scheduler=self.scheduler)

        publish_patcher = patch('orders.notifications.realtime.publish')
        push_patcher = patch('orders.notifications.send_push_notification')
        self.mock_publish = publish_patcher.start()
        self.mock_push = push_patcher.start()
        self.addCleanup(publish_patcher.stop)
        self.addCleanup(push_patcher.stop)


class VerifyPaymentTestCase(ReconciliationTestMixin, TestCase):

    def test_successful_attempt_confirms_order(self):
        """
        Test: A SUCCESS attempt moves the order to pending and notifies.

        Given: Order awaiting payment, gateway reports a successful ₹529 attempt
        When: Customer app calls verify
        Then: Order is pending/success, one newOrder event, one push, timer started
        """
        with self.captureOnCommitCallbacks(execute=True):
            result = self.engine.verify_payment(self.order.id)

        self.assertEqual(result.outcome, Outcome.CONFIRMED)
        self.assertTrue(result.success)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING)
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.SUCCESS)
        self.assertIsNotNone(self.order.response_deadline)

        self.gateway.fetch_payment_attempts.assert_called_once_with(f"order_{self.order.id}")
        self.assertEqual(len(published_events(self.mock_publish, 'newOrder')), 1)
        self.mock_push.delay.assert_called_once()
        self.assertTrue(self.scheduler.is_scheduled(self.order.id))

    def test_second_verify_is_already_processed(self):
        """
        Test: Verify is idempotent.

        Given: Order already confirmed by a first verify
        When: Verify is called again
        Then: Already processed, gateway not queried again, no second notification
        """
        with self.captureOnCommitCallbacks(execute=True):
            self.engine.verify_payment(self.order.id)
        with self.captureOnCommitCallbacks(execute=True):
            result = self.engine.verify_payment(self.order.id)

        self.assertEqual(result.outcome, Outcome.ALREADY_PROCESSED)
        self.assertTrue(result.success)
        self.assertEqual(self.gateway.fetch_payment_attempts.call_count, 1)
        self.assertEqual(len(published_events(self.mock_publish, 'newOrder')), 1)
        self.assertEqual(self.mock_push.delay.call_count, 1)

    def test_no_attempts_leaves_order_untouched(self):
        self.gateway.fetch_payment_attempts.return_value = []

        result = self.engine.verify_payment(self.order.id)

        self.assertEqual(result.outcome, Outcome.NOT_SETTLED)
        self.assertFalse(result.success)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PAYMENT_PENDING)
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.PENDING)

    def test_pending_attempt_is_not_settled(self):
        self.gateway.fetch_payment_attempts.return_value = [
            PaymentAttempt(status='PENDING', amount=Decimal('529.00')),
        ]

        result = self.engine.verify_payment(self.order.id)

        self.assertEqual(result.outcome, Outcome.NOT_SETTLED)

    def test_failed_attempts_cancel_order(self):
        self.gateway.fetch_payment_attempts.return_value = [
            PaymentAttempt(status='FAILED', amount=Decimal('529.00')),
        ]

        with self.captureOnCommitCallbacks(execute=True):
            result = self.engine.verify_payment(self.order.id)

        self.assertEqual(result.outcome, Outcome.FAILED)
        self.assertFalse(result.success)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.CANCELLED)
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.FAILED)
        self.mock_publish.assert_not_called()
        self.mock_push.delay.assert_not_called()

    def test_retry_after_failed_attempt_wins(self):
        self.gateway.fetch_payment_attempts.return_value = [
            PaymentAttempt(status='FAILED', amount=Decimal('529.00')),
            success_attempt('529.00'),
        ]

        result = self.engine.verify_payment(self.order.id)

        self.assertEqual(result.outcome, Outcome.CONFIRMED)

    def test_paid_attempt_after_failure_is_amount_checked(self):
        """
        Given: A failed attempt followed by a PAID attempt for ₹1 on a ₹529 order
        When: Verify runs
        Then: The PAID attempt is the settlement and its amount cancels the order
        """
        self.gateway.fetch_payment_attempts.return_value = [
            PaymentAttempt(status='FAILED', amount=Decimal('529.00')),
            PaymentAttempt(status='PAID', amount=Decimal('1.00')),
        ]

        with self.captureOnCommitCallbacks(execute=True):
            result = self.engine.verify_payment(self.order.id)

        self.assertEqual(result.outcome, Outcome.AMOUNT_MISMATCH)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.CANCELLED)
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.FAILED)
        self.mock_publish.assert_not_called()

    def test_paid_attempt_before_failure_confirms(self):
        self.gateway.fetch_payment_attempts.return_value = [
            PaymentAttempt(status='PAID', amount=Decimal('529.00')),
            PaymentAttempt(status='FAILED', amount=Decimal('529.00')),
        ]

        result = self.engine.verify_payment(self.order.id)

        self.assertEqual(result.outcome, Outcome.CONFIRMED)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING)
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.SUCCESS)

    def test_unreadable_attempt_amount_cancels(self):
        self.gateway.fetch_payment_attempts.return_value = [
            PaymentAttempt(status='SUCCESS', amount='five hundred'),
        ]

        result = self.engine.verify_payment(self.order.id)

        self.assertEqual(result.outcome, Outcome.AMOUNT_MISMATCH)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.CANCELLED)

    def test_verify_amount_mismatch_cancels(self):
        self.gateway.fetch_payment_attempts.return_value = [success_attempt('1.00')]

        with self.captureOnCommitCallbacks(execute=True):
            result = self.engine.verify_payment(self.order.id)

        self.assertEqual(result.outcome, Outcome.AMOUNT_MISMATCH)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.CANCELLED)
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.FAILED)
        self.mock_push.delay.assert_not_called()

    def test_already_failed_order_short_circuits(self):
        self.order.status = Order.Status.CANCELLED
        self.order.payment_status = Order.PaymentStatus.FAILED
        self.order.save()

        result = self.engine.verify_payment(self.order.id)

        self.assertEqual(result.outcome, Outcome.ALREADY_PROCESSED)
        self.assertFalse(result.success)
        self.gateway.fetch_payment_attempts.assert_not_called()

    def test_gateway_error_propagates_without_mutation(self):
        self.gateway.fetch_payment_attempts.side_effect = PaymentGatewayError('Gateway down')

        with self.assertRaises(PaymentGatewayError):
            self.engine.verify_payment(self.order.id)

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PAYMENT_PENDING)

    def test_order_without_session(self):
        self.order.payment_reference = ''
        self.order.save()

        with self.assertRaises(ValidationError):
            self.engine.verify_payment(self.order.id)

    def test_unknown_order(self):
        with self.assertRaises(NotFoundError):
            self.engine.verify_payment(99999)

    def test_offline_restaurant_holds_order(self):
        """
        Test: Restaurants are never given a window they cannot see.

        Given: Restaurant is offline when payment succeeds
        When: Verify confirms the payment
        Then: pending_restaurant_online, no timer, no push, no newOrder event
        """
        self.restaurant.is_online = False
        self.restaurant.save()

        with self.captureOnCommitCallbacks(execute=True):
            result = self.engine.verify_payment(self.order.id)

        self.assertEqual(result.outcome, Outcome.HELD)
        self.assertTrue(result.success)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING_RESTAURANT_ONLINE)
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.SUCCESS)
        self.assertIsNone(self.order.response_deadline)
        self.assertFalse(self.scheduler.is_scheduled(self.order.id))
        self.mock_push.delay.assert_not_called()
        self.assertEqual(published_events(self.mock_publish, 'newOrder'), [])


class WebhookTestCase(ReconciliationTestMixin, TestCase):

    def test_success_webhook_confirms_order(self):
        with self.captureOnCommitCallbacks(execute=True):
            result = self.engine.handle_webhook(webhook_payload(self.order))

        self.assertEqual(result.outcome, Outcome.CONFIRMED)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING)
        self.assertEqual(len(published_events(self.mock_publish, 'newOrder')), 1)

    def test_webhook_retry_notifies_once(self):
        """
        Given: The gateway delivers the same success webhook twice
        When: Both are handled
        Then: One transition, one newOrder event, one push
        """
        payload = webhook_payload(self.order)
        with self.captureOnCommitCallbacks(execute=True):
            first = self.engine.handle_webhook(payload)
        with self.captureOnCommitCallbacks(execute=True):
            second = self.engine.handle_webhook(payload)

        self.assertEqual(first.outcome, Outcome.CONFIRMED)
        self.assertEqual(second.outcome, Outcome.ALREADY_PROCESSED)
        self.assertTrue(second.success)
        self.assertEqual(len(published_events(self.mock_publish, 'newOrder')), 1)
        self.assertEqual(self.mock_push.delay.call_count, 1)

    def test_verify_after_webhook_is_already_processed(self):
        with self.captureOnCommitCallbacks(execute=True):
            self.engine.handle_webhook(webhook_payload(self.order))
        with self.captureOnCommitCallbacks(execute=True):
            result = self.engine.verify_payment(self.order.id)

        self.assertEqual(result.outcome, Outcome.ALREADY_PROCESSED)
        self.gateway.fetch_payment_attempts.assert_not_called()
        self.assertEqual(len(published_events(self.mock_publish, 'newOrder')), 1)

    def test_webhook_lands_while_verify_queries_gateway(self):
        """
        Test: The path that loses the race does not transition again.

        Given: Verify has read the unpaid order and is waiting on the gateway
        When: The webhook confirms the order during that call
        Then: Verify reports already processed; exactly one notification
        """
        payload = webhook_payload(self.order)

        def webhook_first(order_reference):
            self.engine.handle_webhook(payload)
            return [success_attempt('529.00')]

        self.gateway.fetch_payment_attempts.side_effect = webhook_first

        with self.captureOnCommitCallbacks(execute=True):
            result = self.engine.verify_payment(self.order.id)

        self.assertEqual(result.outcome, Outcome.ALREADY_PROCESSED)
        self.assertTrue(result.success)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING)
        self.assertEqual(len(published_events(self.mock_publish, 'newOrder')), 1)
        self.assertEqual(self.mock_push.delay.call_count, 1)

    def test_amount_mismatch_cancels_without_notifying(self):
        """
        Given: Order total ₹529
        When: Webhook reports SUCCESS for ₹500
        Then: cancelled / failed, no restaurant notification, no timer
        """
        with self.captureOnCommitCallbacks(execute=True):
            result = self.engine.handle_webhook(webhook_payload(self.order, amount='500.00'))

        self.assertEqual(result.outcome, Outcome.AMOUNT_MISMATCH)
        self.assertFalse(result.success)
        self.assertEqual(result.details['paid_amount'], '500.0')
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.CANCELLED)
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.FAILED)
        self.mock_publish.assert_not_called()
        self.mock_push.delay.assert_not_called()
        self.assertFalse(self.scheduler.is_scheduled(self.order.id))

    def test_amount_within_tolerance_confirms(self):
        result = self.engine.handle_webhook(webhook_payload(self.order, amount='529.02'))

        self.assertEqual(result.outcome, Outcome.CONFIRMED)

    def test_webhook_with_no_amount_key_confirms(self):
        payload = {'order_id': f"order_{self.order.id}", 'payment_status': 'SUCCESS'}

        result = self.engine.handle_webhook(payload)

        self.assertEqual(result.outcome, Outcome.CONFIRMED)

    def test_unreadable_amount_cancels(self):
        """
        Given: Order total ₹529
        When: Webhook reports SUCCESS with an amount that is not a number
        Then: Treated as a mismatch: cancelled / failed, restaurant not notified
        """
        payload = {
            'order_id': f"order_{self.order.id}",
            'payment_status': 'SUCCESS',
            'payment_amount': '1 INR',
        }

        with self.captureOnCommitCallbacks(execute=True):
            result = self.engine.handle_webhook(payload)

        self.assertEqual(result.outcome, Outcome.AMOUNT_MISMATCH)
        self.assertEqual(result.details['paid_amount'], '1 INR')
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.CANCELLED)
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.FAILED)
        self.mock_publish.assert_not_called()
        self.mock_push.delay.assert_not_called()

    def test_non_numeric_amounts_cancel(self):
        for amount in ('NaN', 'Infinity', True, {'value': 529}):
            with self.subTest(amount=amount):
                order = make_order(self.restaurant, self.customer, self.item, total_price='529.00')
                payload = {
                    'order_id': f"order_{order.id}",
                    'payment_status': 'SUCCESS',
                    'payment_amount': amount,
                }

                result = self.engine.handle_webhook(payload)

                self.assertEqual(result.outcome, Outcome.AMOUNT_MISMATCH)
                order.refresh_from_db()
                self.assertEqual(order.status, Order.Status.CANCELLED)
                self.assertEqual(order.payment_status, Order.PaymentStatus.FAILED)

    def test_user_dropped_marks_payment_cancelled(self):
        result = self.engine.handle_webhook(webhook_payload(self.order, status='USER_DROPPED'))

        self.assertEqual(result.outcome, Outcome.FAILED)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.CANCELLED)
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.CANCELLED)

    def test_non_terminal_status_leaves_order(self):
        result = self.engine.handle_webhook(webhook_payload(self.order, status='PENDING'))

        self.assertEqual(result.outcome, Outcome.NOT_SETTLED)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PAYMENT_PENDING)

    def test_empty_payload_is_a_test_ping(self):
        result = self.engine.handle_webhook({})

        self.assertEqual(result.outcome, Outcome.IGNORED)
        self.assertEqual(result.message, 'Webhook endpoint is working')

    def test_payload_without_order_id(self):
        result = self.engine.handle_webhook({'data': {'payment': {'payment_status': 'SUCCESS'}}})

        self.assertEqual(result.outcome, Outcome.IGNORED)
        self.assertEqual(result.message, 'No order ID found')

    def test_unknown_order_is_ignored(self):
        result = self.engine.handle_webhook({'order_id': 'order_99999', 'payment_status': 'SUCCESS'})

        self.assertEqual(result.outcome, Outcome.IGNORED)
        self.assertEqual(result.details['order_id'], 99999)

    def test_administratively_cancelled_order_is_ignored(self):
        self.order.status = Order.Status.CANCELLED
        self.order.save()

        result = self.engine.handle_webhook(webhook_payload(self.order))

        self.assertEqual(result.outcome, Outcome.IGNORED)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.PENDING)

    def test_processing_error_is_swallowed(self):
        with patch('orders.reconciliation.lock_order', side_effect=RuntimeError('database unavailable')):
            result = self.engine.handle_webhook(webhook_payload(self.order))

        self.assertEqual(result.outcome, Outcome.IGNORED)
        self.assertEqual(result.details['error'], 'database unavailable')


class WebhookExtractionTestCase(TestCase):

    def test_nested_data_shape(self):
        event = extract_webhook_event({
            'data': {
                'order': {'order_id': 'order_7'},
                'payment': {'payment_status': 'success', 'payment_amount': 529},
            },
        })

        self.assertEqual(event.order_id, 7)
        self.assertEqual(event.gateway_status, 'SUCCESS')
        self.assertEqual(event.amount, Decimal('529'))

    def test_order_object_shape(self):
        event = extract_webhook_event({
            'order': {'order_id': 'order_8'},
            'payment': {'payment_status': 'FAILED', 'payment_amount': '12.50'},
        })

        self.assertEqual(event.order_id, 8)
        self.assertEqual(event.gateway_status, 'FAILED')
        self.assertEqual(event.amount, Decimal('12.50'))

    def test_flat_shape(self):
        event = extract_webhook_event({'order_id': '9', 'payment_status': 'SUCCESS'})

        self.assertEqual(event.order_id, 9)
        self.assertIsNone(event.amount)

    def test_order_status_fallback(self):
        event = extract_webhook_event({
            'data': {'order': {'order_id': 'order_10', 'order_status': 'PAID', 'order_amount': 99}},
        })

        self.assertEqual(event.gateway_status, 'PAID')
        self.assertEqual(event.amount, Decimal('99'))

    def test_first_matching_path_wins(self):
        event = extract_webhook_event({
            'data': {'order': {'order_id': 'order_1'}},
            'order_id': 'order_2',
        })

        self.assertEqual(event.order_id, 1)

    def test_custom_field_paths(self):
        paths = {
            'order_id': [['reference']],
            'status': [['state']],
            'amount': [['paid']],
        }

        event = extract_webhook_event({'reference': 'order_3', 'state': 'SUCCESS', 'paid': '1.00'}, paths)

        self.assertEqual(event.order_id, 3)
        self.assertEqual(event.amount, Decimal('1.00'))

    def test_parse_order_reference(self):
        self.assertEqual(parse_order_reference('order_42'), 42)
        self.assertEqual(parse_order_reference(42), 42)
        self.assertIsNone(parse_order_reference('cf_abc'))
        self.assertIsNone(parse_order_reference(None))


class SettlementFromAttemptsTestCase(TestCase):

    def test_empty_list(self):
        self.assertIsNone(settlement_from_attempts([]))

    def test_success_with_amount(self):
        settlement = settlement_from_attempts([success_attempt('10.00')])

        self.assertEqual(settlement.payment_status, Order.PaymentStatus.SUCCESS)
        self.assertEqual(settlement.amount, Decimal('10.00'))

    def test_mixed_pending_and_failed_is_not_final(self):
        attempts = [
            PaymentAttempt(status='FAILED', amount=None),
            PaymentAttempt(status='PENDING', amount=None),
        ]

        self.assertIsNone(settlement_from_attempts(attempts))

    def test_paid_counts_as_success_in_any_position(self):
        for attempts in (
            [PaymentAttempt(status='FAILED', amount=None), PaymentAttempt(status='PAID', amount='1.00')],
            [PaymentAttempt(status='PAID', amount='1.00'), PaymentAttempt(status='FAILED', amount=None)],
        ):
            with self.subTest(statuses=[a.status for a in attempts]):
                settlement = settlement_from_attempts(attempts)

                self.assertEqual(settlement.payment_status, Order.PaymentStatus.SUCCESS)
                self.assertEqual(settlement.amount, Decimal('1.00'))

    def test_all_failed_uses_last_status(self):
        settlement = settlement_from_attempts([
            PaymentAttempt(status='FAILED', amount=None),
            PaymentAttempt(status='USER_DROPPED', amount=None),
        ])

        self.assertEqual(settlement.payment_status, Order.PaymentStatus.CANCELLED)


class ParseAmountTestCase(SimpleTestCase):

    def test_numbers(self):
        self.assertEqual(parse_amount(529), Decimal('529'))
        self.assertEqual(parse_amount('529.00'), Decimal('529.00'))
        self.assertEqual(parse_amount(529.5), Decimal('529.5'))

    def test_not_amounts(self):
        for value in (None, '', '1 INR', 'NaN', '-Infinity', True, {'value': 1}, [529]):
            with self.subTest(value=value):
                self.assertIsNone(parse_amount(value))


class InterleavedSettlementTestCase(ReconciliationTestMixin, TestCase):
    """
    The second path to take the order lock must find the order settled.

    ``lock_order`` is wrapped so the competing path settles and commits
    after this path's unlocked pre-check and before it takes the lock.
    """

    def run_other_path_first(self, other_path):
        calls = []

        def lock_after_other_path(order_id):
            if not calls:
                calls.append(order_id)
                other_path()
            return lock_order(order_id)

        return patch('orders.reconciliation.lock_order', side_effect=lock_after_other_path)

    def test_webhook_settles_inside_verify(self):
        with self.run_other_path_first(lambda: self.engine.handle_webhook(webhook_payload(self.order))):
            with self.captureOnCommitCallbacks(execute=True):
                result = self.engine.verify_payment(self.order.id)

        self.assertEqual(result.outcome, Outcome.ALREADY_PROCESSED)
        self.assertTrue(result.success)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING)
        self.assertEqual(len(published_events(self.mock_publish, 'newOrder')), 1)
        self.assertEqual(self.mock_push.delay.call_count, 1)
        self.assertTrue(self.scheduler.is_scheduled(self.order.id))

    def test_verify_settles_inside_webhook(self):
        with self.run_other_path_first(lambda: self.engine.verify_payment(self.order.id)):
            with self.captureOnCommitCallbacks(execute=True):
                result = self.engine.handle_webhook(webhook_payload(self.order))

        self.assertEqual(result.outcome, Outcome.ALREADY_PROCESSED)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING)
        self.assertEqual(len(published_events(self.mock_publish, 'newOrder')), 1)
        self.assertEqual(self.mock_push.delay.call_count, 1)

    def test_failure_cannot_override_confirmed_payment(self):
        failed = webhook_payload(self.order, status='FAILED')

        with self.run_other_path_first(lambda: self.engine.verify_payment(self.order.id)):
            with self.captureOnCommitCallbacks(execute=True):
                result = self.engine.handle_webhook(failed)

        self.assertEqual(result.outcome, Outcome.ALREADY_PROCESSED)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.SUCCESS)
        self.assertEqual(len(published_events(self.mock_publish, 'newOrder')), 1)


@skipUnless(connection.vendor == 'postgresql', 'Row locks need a database with SELECT ... FOR UPDATE')
class ConcurrentReconciliationTestCase(TransactionTestCase):
    """
    Verify and webhook racing on separate connections.
    Uses TransactionTestCase for proper multi-threading support.
    """

    def setUp(self):
        self.restaurant = make_restaurant()
        self.customer = make_customer()
        self.item = make_menu_item(self.restaurant, price='240.00')
        self.order = make_order(self.restaurant, self.customer, self.item, quantity=2, total_price='529.00')
        self.scheduler = FakeScheduler()

    def test_concurrent_verify_and_webhook_transition_once(self):
        """
        Given: An order awaiting payment
        When: Verify and webhook both report success at the same time
        Then: Exactly one confirms, the other is already processed,
              and a single newOrder event is published
        """
        results = {}
        barrier = threading.Barrier(2)

        def run(key):
            engine = ReconciliationEngine(
                gateway=fake_gateway([success_attempt('529.00')]),
                scheduler=self.scheduler,
            )
            barrier.wait()
            try:
                if key == 'verify':
                    results[key] = engine.verify_payment(self.order.id).outcome
                else:
                    results[key] = engine.handle_webhook(webhook_payload(self.order)).outcome
            finally:
                connection.close()

        with patch('orders.notifications.realtime.publish') as mock_publish, \
                patch('orders.notifications.send_push_notification'):
            threads = [threading.Thread(target=run, args=(key,)) for key in ('verify', 'webhook')]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        self.assertEqual(sorted(results.values()), sorted([Outcome.CONFIRMED, Outcome.ALREADY_PROCESSED]))
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING)
        self.assertEqual(len(published_events(mock_publish, 'newOrder')), 1)
