"""
CITYDROP Core Tests
====================

Tests for:
1. Courier registration and blocking
2. Courier registry API (operators only)
3. Domain error -> HTTP mapping
4. Health endpoints
"""

import uuid
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db import IntegrityError
from django.test import TestCase
from rest_framework import status
from rest_framework.test import APITestCase

from core.exceptions import (
    CourierNotFound,
    IntegrityViolation,
    NotAssignedCourier,
    StaleState,
    dispatch_exception_handler,
)
from core.models import Courier
from core.services import block_courier, get_courier, register_courier, unblock_courier


class TestCourierServices(TestCase):
    """Tests for courier registration and blocking."""

    def setUp(self):
        self.courier = register_courier('Avi Courier', '+972501234567')

    # ==========================================
    # Registration
    # ==========================================

    def test_new_courier_defaults(self):
        """A new courier can claim and starts with an empty ledger."""
        self.assertTrue(self.courier.can_claim)
        self.assertEqual(self.courier.vehicle_class, 'motorcycle')
        self.assertEqual(self.courier.balance, Decimal('0.00'))
        self.assertEqual(self.courier.total_earned, Decimal('0.00'))
        self.assertEqual(self.courier.total_deliveries, 0)

    def test_register_with_vehicle(self):
        courier = register_courier('Van Driver', '+972501234568', vehicle_class='van')
        self.assertEqual(courier.vehicle_class, 'van')

    def test_invalid_phone_rejected(self):
        with self.assertRaises(ValidationError):
            register_courier('Bad Phone', 'call-me')

    def test_duplicate_phone_rejected(self):
        with self.assertRaises(ValidationError):
            register_courier('Twin', '+972501234567')

    def test_balance_cannot_go_negative(self):
        """The database refuses a negative balance even for a raw update."""
        with self.assertRaises(IntegrityError):
            Courier.objects.filter(pk=self.courier.pk).update(balance=Decimal('-1.00'))

    # ==========================================
    # Blocking
    # ==========================================

    def test_block_and_unblock(self):
        courier = block_courier(self.courier.pk, reason='no-show')
        self.assertTrue(courier.is_blocked)
        self.assertEqual(courier.blocked_reason, 'no-show')
        self.assertFalse(courier.can_claim)

        courier = unblock_courier(self.courier.pk)
        self.assertFalse(courier.is_blocked)
        self.assertEqual(courier.blocked_reason, '')
        self.assertTrue(courier.can_claim)

    def test_inactive_courier_cannot_claim(self):
        self.courier.is_active = False
        self.assertFalse(self.courier.can_claim)

    def test_unknown_courier(self):
        with self.assertRaises(CourierNotFound):
            block_courier(uuid.uuid4())
        with self.assertRaises(CourierNotFound):
            get_courier(uuid.uuid4())

    def test_malformed_courier_id(self):
        with self.assertRaises(CourierNotFound):
            get_courier('not-a-uuid')
        with self.assertRaises(CourierNotFound):
            block_courier('not-a-uuid')
        with self.assertRaises(CourierNotFound):
            unblock_courier('not-a-uuid')


class TestCourierAPI(APITestCase):
    """Tests for /api/couriers/."""

    def setUp(self):
        self.operator = get_user_model().objects.create_user(
            username='dispatcher', password='testpass123', is_staff=True
        )
        self.client.force_authenticate(user=self.operator)

    def test_register_courier(self):
        response = self.client.post('/api/couriers/', {
            'full_name': 'Yossi Courier',
            'phone': '050 123 4567',
            'vehicle_class': 'car',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['phone'], '0501234567')
        self.assertEqual(response.data['vehicle_class'], 'car')
        self.assertTrue(response.data['can_claim'])

    def test_register_linked_to_user(self):
        user = get_user_model().objects.create_user(username='yossi', password='testpass123')
        response = self.client.post('/api/couriers/', {
            'full_name': 'Yossi Courier',
            'phone': '+972501234567',
            'user_id': user.pk,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(user.courier_profile.phone, '+972501234567')

    def test_duplicate_phone(self):
        register_courier('First', '+972501234567')
        response = self.client.post('/api/couriers/', {
            'full_name': 'Second',
            'phone': '+972501234567',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_block_via_api(self):
        courier = register_courier('Avi', '+972501234567')

        response = self.client.post(f'/api/couriers/{courier.pk}/block/', {'reason': 'fraud'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['is_blocked'])
        self.assertFalse(response.data['can_claim'])

        response = self.client.get('/api/couriers/', {'blocked': 'true'})
        self.assertEqual(response.data['count'], 1)

    def test_block_malformed_id_is_not_found(self):
        for route in ('block', 'unblock'):
            response = self.client.post(f'/api/couriers/not-a-uuid/{route}/', {}, format='json')

            self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
            self.assertEqual(response.data['code'], 'courier_not_found')

    def test_non_operator_rejected(self):
        self.client.force_authenticate(
            user=get_user_model().objects.create_user(username='nobody', password='testpass123')
        )
        response = self.client.get('/api/couriers/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class TestExceptionHandler(TestCase):
    """Domain errors map onto stable HTTP codes."""

    def test_stale_state_is_conflict(self):
        response = dispatch_exception_handler(StaleState(), {})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data['code'], 'stale_state')

    def test_not_assigned_is_forbidden(self):
        response = dispatch_exception_handler(NotAssignedCourier("not yours"), {})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.data, {'error': 'not yours', 'code': 'not_assigned_courier'})

    def test_integrity_violation_logged(self):
        with self.assertLogs('core.exceptions', level='CRITICAL'):
            response = dispatch_exception_handler(IntegrityViolation("double credit"), {})
        self.assertEqual(response.status_code, 500)

    def test_other_exceptions_fall_through(self):
        self.assertIsNone(dispatch_exception_handler(ValueError("boom"), {}))


class TestHealthEndpoints(TestCase):
    """Tests for the liveness and readiness probes."""

    def test_health_endpoint_accessible(self):
        """Health check should be accessible without auth."""
        response = self.client.get('/health/')
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['status'], 'ok')
        self.assertEqual(data['service'], 'citydrop')

    @patch('core.health.check_celery', side_effect=ConnectionError("broker down"))
    def test_readiness_survives_celery_outage(self, mock_celery):
        """A missing worker degrades the service but does not fail readiness."""
        with self.assertLogs('core.health', level='ERROR'):
            response = self.client.get('/health/ready/')

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['checks']['database']['status'], 'healthy')
        self.assertEqual(data['checks']['celery']['status'], 'unhealthy')

    @patch('core.health.check_celery', return_value={'status': 'healthy', 'workers': 1})
    @patch('core.health.check_database', side_effect=Exception("connection refused"))
    def test_readiness_fails_without_database(self, mock_db, mock_celery):
        with self.assertLogs('core.health', level='ERROR'):
            response = self.client.get('/health/ready/')
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()['status'], 'unhealthy')
