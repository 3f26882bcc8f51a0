"""
Tests for restaurant status handling, verification and sample data seeding.
"""
from datetime import timedelta
from io import StringIO
from unittest.mock import patch

from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from core.exceptions import NotFoundError, ValidationError
from orders.models import Order
from orders.tests.factories import FakeScheduler, make_customer, make_order, make_restaurant
from restaurants.models import Customer, DeviceToken, MenuItem, Restaurant
from restaurants.services import (
    get_menu_item,
    list_pending_verification,
    normalize_uid,
    set_restaurant_online,
    update_verification,
)


class RestaurantOnlineTestCase(TestCase):
    """Orders held while a restaurant is offline are released when it returns."""

    def setUp(self):
        self.restaurant = make_restaurant(is_online=False)
        self.customer = make_customer()
        self.held = make_order(
            self.restaurant, self.customer,
            status=Order.Status.PENDING_RESTAURANT_ONLINE,
            payment_status=Order.PaymentStatus.SUCCESS,
        )
        self.scheduler = FakeScheduler()
        patcher = patch('orders.scheduler._scheduler', self.scheduler)
        patcher.start()
        self.addCleanup(patcher.stop)

    @patch('orders.notifications.realtime.publish')
    def test_coming_online_releases_held_orders(self, mock_publish):
        """
        Given: A paid order held because the restaurant was offline
        When: The restaurant comes online
        Then: The order becomes pending with a response window and a newOrder event
        """
        with self.captureOnCommitCallbacks(execute=True):
            set_restaurant_online(self.restaurant.uid, True)

        self.held.refresh_from_db()
        self.assertEqual(self.held.status, Order.Status.PENDING)
        self.assertIsNotNone(self.held.response_deadline)
        self.assertTrue(self.scheduler.is_scheduled(self.held.id))
        self.assertEqual(
            [c.args[1] for c in mock_publish.call_args_list if c.args[0] == 'restaurant:rest-1'],
            ['newOrder'],
        )

    def test_muted_restaurant_keeps_orders_held(self):
        self.restaurant.notifications_enabled = False
        self.restaurant.save()

        set_restaurant_online(self.restaurant.uid, True)

        self.held.refresh_from_db()
        self.assertEqual(self.held.status, Order.Status.PENDING_RESTAURANT_ONLINE)
        self.assertFalse(self.scheduler.is_scheduled(self.held.id))

    def test_going_offline_releases_nothing(self):
        restaurant = set_restaurant_online(self.restaurant.uid, False)

        self.assertFalse(restaurant.is_online)
        self.held.refresh_from_db()
        self.assertEqual(self.held.status, Order.Status.PENDING_RESTAURANT_ONLINE)

    def test_status_endpoint(self):
        client = APIClient()

        response = client.put(f'/api/restaurants/{self.restaurant.uid}/status/', {'is_online': True}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['data']['restaurant']['is_online'])
        self.held.refresh_from_db()
        self.assertEqual(self.held.status, Order.Status.PENDING)

    def test_status_endpoint_unknown_restaurant(self):
        response = APIClient().put('/api/restaurants/nobody/status/', {'is_online': True}, format='json')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'not_found')

    def test_status_endpoint_requires_flag(self):
        response = APIClient().put(f'/api/restaurants/{self.restaurant.uid}/status/', {}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class RestaurantLookupTestCase(TestCase):

    def setUp(self):
        self.restaurant = make_restaurant()

    def test_normalize_uid(self):
        self.assertEqual(normalize_uid('  rest-1 '), 'rest-1')
        with self.assertRaises(ValidationError):
            normalize_uid('   ')
        with self.assertRaises(ValidationError):
            normalize_uid(None)

    def test_unknown_restaurant(self):
        with self.assertRaises(NotFoundError):
            set_restaurant_online('missing', True)

    def test_get_menu_item_hides_withdrawn_items(self):
        item = MenuItem.objects.create(restaurant=self.restaurant, name='Kulfi', price='90.00')
        self.assertEqual(get_menu_item(item.id, self.restaurant.uid), item)

        item.is_deleted = True
        item.save()
        self.assertIsNone(get_menu_item(item.id, self.restaurant.uid))


class SeedDataCommandTestCase(TestCase):

    def test_seed_creates_sample_data(self):
        call_command('seed_data', restaurants=3, customers=4, seed=7, stdout=StringIO())

        self.assertEqual(Restaurant.objects.count(), 3)
        self.assertEqual(Customer.objects.count(), 4)
        self.assertEqual(DeviceToken.objects.count(), 3)
        self.assertTrue(MenuItem.objects.exists())
        self.assertFalse(MenuItem.objects.filter(restaurant__is_pure_veg=True, is_veg=False).exists())

    def test_seed_is_repeatable(self):
        call_command('seed_data', restaurants=2, customers=2, seed=7, stdout=StringIO())
        menu_count = MenuItem.objects.count()

        call_command('seed_data', restaurants=2, customers=2, seed=7, stdout=StringIO())

        self.assertEqual(Restaurant.objects.count(), 2)
        self.assertEqual(MenuItem.objects.count(), menu_count)

    def test_clear_removes_orders(self):
        call_command('seed_data', restaurants=1, customers=1, seed=7, stdout=StringIO())
        make_order(Restaurant.objects.get(), Customer.objects.get())

        call_command('seed_data', '--clear', restaurants=1, customers=1, seed=7, stdout=StringIO())

        self.assertFalse(Order.objects.exists())
        self.assertEqual(Restaurant.objects.count(), 1)


class RestaurantVerificationTestCase(TestCase):
    """Admin review of restaurant documents."""

    def setUp(self):
        self.client = APIClient()
        self.restaurant = make_restaurant()
        publish_patcher = patch('core.realtime.publish')
        self.mock_publish = publish_patcher.start()
        self.addCleanup(publish_patcher.stop)

    def submit_documents(self, restaurant=None):
        restaurant = restaurant or self.restaurant
        response = self.client.post(f'/api/restaurants/{restaurant.uid}/documents-submitted/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        restaurant.refresh_from_db()
        return restaurant

    def test_documents_submitted(self):
        restaurant = self.submit_documents()

        self.assertTrue(restaurant.documents_submitted)
        self.assertIsNotNone(restaurant.submission_date)
        self.assertEqual(restaurant.verification_status, Restaurant.VerificationStatus.PENDING)

    def test_documents_submitted_unknown_restaurant(self):
        response = self.client.post('/api/restaurants/nobody/documents-submitted/')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_verification_status_before_review(self):
        response = self.client.get(f'/api/restaurants/{self.restaurant.uid}/verification-status/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        data = response.data['data']
        self.assertEqual(data['verification_status'], 'pending')
        self.assertFalse(data['documents_submitted'])
        self.assertFalse(data['can_access_dashboard'])

    def test_admin_verifies_restaurant(self):
        """
        Given: A restaurant that has submitted its documents
        When: An admin marks it verified
        Then: Status, notes and date are stored, the restaurant is told over
              its channel, and it may now open the dashboard
        """
        self.submit_documents()

        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.put(
                f'/api/admin/restaurants/{self.restaurant.uid}/verification/',
                {'verification_status': 'verified', 'verification_notes': 'FSSAI licence checked'},
                format='json',
            )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['message'], 'Restaurant verified successfully')
        self.restaurant.refresh_from_db()
        self.assertEqual(self.restaurant.verification_status, Restaurant.VerificationStatus.VERIFIED)
        self.assertEqual(self.restaurant.verification_notes, 'FSSAI licence checked')
        self.assertIsNotNone(self.restaurant.verification_date)
        self.assertTrue(self.restaurant.can_access_dashboard)

        self.mock_publish.assert_called_once()
        channel, event, payload = self.mock_publish.call_args.args
        self.assertEqual(channel, 'restaurant:rest-1')
        self.assertEqual(event, 'verificationStatusUpdated')
        self.assertEqual(payload['status'], 'verified')
        self.assertEqual(payload['notes'], 'FSSAI licence checked')
        self.assertEqual(payload['date'], self.restaurant.verification_date)

    def test_admin_rejects_restaurant(self):
        self.submit_documents()

        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.put(
                f'/api/admin/restaurants/{self.restaurant.uid}/verification/',
                {'verification_status': 'rejected'},
                format='json',
            )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.restaurant.refresh_from_db()
        self.assertEqual(self.restaurant.verification_status, Restaurant.VerificationStatus.REJECTED)
        self.assertFalse(self.restaurant.can_access_dashboard)
        self.assertEqual(self.mock_publish.call_args.args[2]['status'], 'rejected')

    def test_decision_must_be_verified_or_rejected(self):
        self.submit_documents()

        for decision in ('pending', 'approved'):
            with self.subTest(decision=decision):
                with self.captureOnCommitCallbacks(execute=True):
                    response = self.client.put(
                        f'/api/admin/restaurants/{self.restaurant.uid}/verification/',
                        {'verification_status': decision},
                        format='json',
                    )

                self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
                self.assertEqual(response.data['error'], 'validation_error')

        self.restaurant.refresh_from_db()
        self.assertEqual(self.restaurant.verification_status, Restaurant.VerificationStatus.PENDING)
        self.mock_publish.assert_not_called()

    def test_decision_requires_submitted_documents(self):
        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.put(
                f'/api/admin/restaurants/{self.restaurant.uid}/verification/',
                {'verification_status': 'verified'},
                format='json',
            )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['message'], 'Cannot verify restaurant without submitted documents')
        self.restaurant.refresh_from_db()
        self.assertIsNone(self.restaurant.verification_date)
        self.mock_publish.assert_not_called()

    def test_decision_for_unknown_restaurant(self):
        response = self.client.put(
            '/api/admin/restaurants/nobody/verification/',
            {'verification_status': 'verified'},
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_pending_queue_oldest_submission_first(self):
        newer = make_restaurant(uid='rest-2', name='Curry Leaf')
        make_restaurant(uid='rest-3', name='Chaat Street')
        Restaurant.objects.filter(uid=newer.uid).update(
            documents_submitted=True, submission_date=timezone.now(),
        )
        Restaurant.objects.filter(uid=self.restaurant.uid).update(
            documents_submitted=True, submission_date=timezone.now() - timedelta(days=2),
        )

        response = self.client.get('/api/admin/restaurants/pending-verification/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(
            [r['uid'] for r in response.data['data']['restaurants']],
            ['rest-1', 'rest-2'],
        )

    def test_decided_restaurants_leave_the_queue(self):
        self.submit_documents()
        update_verification(self.restaurant.uid, 'verified')

        self.assertFalse(list_pending_verification().exists())

    def test_overview_with_status_filter(self):
        make_restaurant(uid='rest-2', name='Curry Leaf', verification_status='verified')

        everyone = self.client.get('/api/admin/restaurants/all-with-status/')
        verified = self.client.get('/api/admin/restaurants/all-with-status/', {'status': 'verified'})
        unknown_filter = self.client.get('/api/admin/restaurants/all-with-status/', {'status': 'banned'})

        self.assertEqual([r['uid'] for r in everyone.data['data']['restaurants']], ['rest-2', 'rest-1'])
        self.assertEqual([r['uid'] for r in verified.data['data']['restaurants']], ['rest-2'])
        self.assertEqual(len(unknown_filter.data['data']['restaurants']), 2)
