"""
CITYDROP Orders API Tests
==========================

Tests for:
1. Operator order creation and publishing
2. Courier claim / pickup / deliver over HTTP
3. Error codes for lost races and illegal moves
4. Public tracking, order form and quote
5. Permissions and statistics
"""

from decimal import Decimal
from unittest.mock import patch

from rest_framework import status
from rest_framework.test import APITestCase

from logistics.models import Order, OrderStatus
from logistics.services import claims, lifecycle
from logistics.tests.helpers import make_courier, make_operator, make_order, make_published_order


ORDER_PAYLOAD = {
    'sender_name': 'Dana Sender',
    'sender_phone': '052-111-1111',
    'pickup_address': 'Herzl 10, Tel Aviv',
    'receiver_name': 'Noa Receiver',
    'receiver_phone': '+972522222222',
    'delivery_address': 'Dizengoff 50, Tel Aviv',
    'vehicle_class': 'motorcycle',
}


class TestOperatorOrderAPI(APITestCase):
    """Tests for the operator side of /api/orders/."""

    def setUp(self):
        self.operator = make_operator()
        self.client.force_authenticate(user=self.operator)

    def test_create_order(self):
        payload = dict(ORDER_PAYLOAD, distance_km='5', is_night_window=False)
        response = self.client.post('/api/orders/', payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], 'new')
        self.assertEqual(response.data['total_price'], '95.00')
        self.assertEqual(response.data['commission'], '23.00')
        self.assertEqual(response.data['courier_payout'], '72.00')
        self.assertEqual(response.data['sender_phone'], '0521111111')

    def test_create_order_with_override(self):
        payload = dict(ORDER_PAYLOAD, distance_km='12', override_price='200', is_night_window=False)
        response = self.client.post('/api/orders/', payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data['price_overridden'])
        self.assertEqual(response.data['courier_payout'], '150.00')

    def test_create_order_rejects_fractional_override(self):
        payload = dict(ORDER_PAYLOAD, distance_km='12', override_price='99.50', is_night_window=False)
        response = self.client.post('/api/orders/', payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('override_price', response.data)
        self.assertFalse(Order.objects.exists())

    def test_create_order_invalid_phone(self):
        payload = dict(ORDER_PAYLOAD, distance_km='5', receiver_phone='abc')
        response = self.client.post('/api/orders/', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('receiver_phone', response.data)

    @patch('logistics.services.distance.DistanceEstimator.estimate_km')
    def test_create_order_distance_unavailable(self, mock_estimate):
        from core.exceptions import DistanceUnavailable
        mock_estimate.side_effect = DistanceUnavailable("Distance service timed out")

        response = self.client.post('/api/orders/', ORDER_PAYLOAD, format='json')

        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)
        self.assertEqual(response.data['code'], 'distance_unavailable')
        self.assertEqual(Order.objects.count(), 0)

    def test_publish_then_publish_again(self):
        order = make_order()

        response = self.client.post(f'/api/orders/{order.pk}/publish/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'published')

        response = self.client.post(f'/api/orders/{order.pk}/publish/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'stale_state')

    def test_cancel(self):
        order = make_published_order()
        response = self.client.post(f'/api/orders/{order.pk}/cancel/', {'reason': 'customer called'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'cancelled')
        self.assertEqual(response.data['cancel_reason'], 'customer called')

    def test_history(self):
        order = make_published_order()
        response = self.client.get(f'/api/orders/{order.pk}/history/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([e['status'] for e in response.data], ['new', 'published'])

    def test_unknown_order(self):
        response = self.client.post('/api/orders/00000000-0000-0000-0000-000000000000/publish/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['code'], 'order_not_found')

    def test_list_filtered_by_status(self):
        make_order()
        make_published_order()

        response = self.client.get('/api/orders/', {'status': 'published'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['status'], 'published')

    def test_stats(self):
        courier = make_courier()
        delivered = make_published_order()
        claims.claim(delivered.pk, courier.pk)
        lifecycle.pickup(delivered.pk, courier.pk)
        lifecycle.deliver(delivered.pk, courier.pk)
        make_published_order()

        response = self.client.get('/api/orders/stats/', {'days': 7})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        stats = response.data['statistics']
        self.assertEqual(stats['total_orders'], 2)
        self.assertEqual(stats['delivered_orders'], 1)
        self.assertEqual(stats['published_orders'], 1)
        self.assertEqual(Decimal(stats['total_revenue']), Decimal('95.00'))
        self.assertEqual(Decimal(stats['total_paid_to_couriers']), Decimal('72.00'))

    def test_stats_bad_days(self):
        response = self.client.get('/api/orders/stats/', {'days': 'week'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class TestCourierOrderAPI(APITestCase):
    """Tests for the courier side of /api/orders/."""

    def setUp(self):
        self.courier = make_courier(phone='+972501000001', with_user=True)
        self.rival = make_courier(phone='+972501000002', full_name='Rival', with_user=True)
        self.order = make_published_order()
        self.client.force_authenticate(user=self.courier.user)

    def test_full_delivery_flow(self):
        response = self.client.post(f'/api/orders/{self.order.pk}/claim/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['outcome'], 'ok')
        self.assertEqual(response.data['order']['courier_name'], 'Test Courier')

        response = self.client.post(f'/api/orders/{self.order.pk}/pickup/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'picked_up')

        response = self.client.post(f'/api/orders/{self.order.pk}/deliver/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['order']['status'], 'delivered')
        self.assertEqual(response.data['earned'], '72.00')

        self.courier.refresh_from_db()
        self.assertEqual(self.courier.balance, Decimal('72.00'))

    def test_second_claimer_gets_conflict(self):
        self.client.post(f'/api/orders/{self.order.pk}/claim/')

        self.client.force_authenticate(user=self.rival.user)
        response = self.client.post(f'/api/orders/{self.order.pk}/claim/')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['outcome'], 'already_taken')
        self.assertEqual(response.data['code'], 'already_taken')
        self.assertEqual(response.data['error'], 'Order was already taken by another courier')

    def test_blocked_courier_gets_forbidden(self):
        from core.services import block_courier
        block_courier(self.courier.pk)

        response = self.client.post(f'/api/orders/{self.order.pk}/claim/')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['code'], 'courier_blocked')
        self.assertEqual(response.data['outcome'], 'courier_blocked')

    def test_claim_next(self):
        response = self.client.post('/api/orders/claim-next/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['order']['id'], str(self.order.pk))

        response = self.client.post('/api/orders/claim-next/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['outcome'], 'none_available')
        self.assertIsNone(response.data['order'])

    def test_other_courier_cannot_pickup(self):
        self.client.post(f'/api/orders/{self.order.pk}/claim/')

        self.client.force_authenticate(user=self.rival.user)
        response = self.client.post(f'/api/orders/{self.order.pk}/pickup/')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['code'], 'not_assigned_courier')

    def test_deliver_before_pickup(self):
        self.client.post(f'/api/orders/{self.order.pk}/claim/')
        response = self.client.post(f'/api/orders/{self.order.pk}/deliver/')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'invalid_transition')

    def test_courier_sees_pool_and_own_orders(self):
        make_order()  # not published, hidden
        taken = make_published_order()
        claims.claim(taken.pk, self.rival.pk)

        response = self.client.get('/api/orders/')

        ids = {row['id'] for row in response.data['results']}
        self.assertEqual(ids, {str(self.order.pk)})

    def test_courier_cannot_publish_or_cancel(self):
        draft = make_order()
        response = self.client.post(f'/api/orders/{draft.pk}/publish/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        response = self.client.post(f'/api/orders/{self.order.pk}/cancel/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_operator_cannot_claim(self):
        self.client.force_authenticate(user=make_operator())
        response = self.client.post(f'/api/orders/{self.order.pk}/claim/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_anonymous_rejected(self):
        self.client.force_authenticate(user=None)
        response = self.client.get('/api/orders/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class TestPublicAPI(APITestCase):
    """Tests for the unauthenticated endpoints."""

    def test_tracking_hides_split(self):
        order = make_published_order()

        response = self.client.get(f'/api/public/orders/{order.order_number}/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'published')
        self.assertEqual(response.data['total_price'], '95.00')
        self.assertNotIn('commission', response.data)
        self.assertNotIn('courier_payout', response.data)
        self.assertNotIn('sender_phone', response.data)

    def test_tracking_unknown_number(self):
        response = self.client.get('/api/public/orders/CD-999999/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    @patch('logistics.services.lifecycle.is_night_time', return_value=False)
    @patch('logistics.services.distance.DistanceEstimator.estimate_km', return_value=Decimal('5.00'))
    def test_public_order_form(self, mock_estimate, mock_night):
        response = self.client.post('/api/public/orders/', ORDER_PAYLOAD, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], 'new')
        self.assertEqual(response.data['total_price'], '95.00')
        order = Order.objects.get(order_number=response.data['order_number'])
        self.assertEqual(order.history.get().actor_type, 'system')

    @patch('logistics.views.is_night_time', return_value=False)
    def test_quote_with_distance(self, mock_night):
        response = self.client.post('/api/public/quote/', {'distance_km': '5'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total'], '95.00')
        self.assertEqual(response.data['vehicle_class'], 'motorcycle')
        self.assertEqual(Order.objects.count(), 0)

    def test_quote_needs_addresses_or_distance(self):
        response = self.client.post('/api/public/quote/', {'pickup_address': 'Herzl 10'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
