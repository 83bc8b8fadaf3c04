"""
CITYDROP Pricing Tests
=======================

Tests for:
1. PricingCalculator (base/per-km/VAT/rounding/split)
2. Night surcharge and night window detection
3. Operator price override
4. Distance estimator (Google Distance Matrix client)
"""

from datetime import datetime
from decimal import Decimal
from unittest.mock import patch, MagicMock

import requests
from django.test import SimpleTestCase, override_settings

from core.exceptions import DistanceUnavailable
from logistics.services.distance import DistanceEstimator
from logistics.services.pricing import PricingCalculator, Tariff, is_night_time


class TestPricingCalculator(SimpleTestCase):
    """Tests for the pure price computation."""

    def setUp(self):
        self.calculator = PricingCalculator(
            tariffs={
                'motorcycle': Tariff(base=Decimal('70'), per_km=Decimal('3')),
                'car': Tariff(base=Decimal('75'), per_km=Decimal('2.5')),
            },
            free_km=Decimal('0'),
            vat_rate=Decimal('0.18'),
            commission_rate=Decimal('0.25'),
            night_multiplier=Decimal('1.5'),
        )

    def test_reference_scenario(self):
        """12 km by motorcycle: 106 before VAT, 19.08 VAT, 126 total, 31 / 95 split."""
        price = self.calculator.price(Decimal('12'), 'motorcycle')

        self.assertEqual(price.price_before_vat, Decimal('106.00'))
        self.assertEqual(price.vat, Decimal('19.08'))
        self.assertEqual(price.total, Decimal('126.00'))
        self.assertEqual(price.commission, Decimal('31.00'))
        self.assertEqual(price.payout, Decimal('95.00'))

    def test_total_always_rounds_up(self):
        """Any fraction pushes the total to the next whole unit."""
        # 70 + 0.1 * 3 = 70.3 -> 82.954 with VAT
        price = self.calculator.price(Decimal('0.1'), 'motorcycle')
        self.assertEqual(price.total, Decimal('83.00'))

    def test_commission_plus_payout_equals_total(self):
        """The split never loses or invents money."""
        for km in ('0', '0.5', '1', '3.3', '7.77', '12', '25', '101.9'):
            for vehicle in ('motorcycle', 'car'):
                for night in (False, True):
                    price = self.calculator.price(Decimal(km), vehicle, night)
                    self.assertEqual(price.commission + price.payout, price.total)
                    self.assertGreaterEqual(price.payout, 0)

    def test_free_km_not_billed(self):
        """Distance inside the free allowance only pays the base."""
        calculator = PricingCalculator(
            tariffs={'motorcycle': Tariff(base=Decimal('70'), per_km=Decimal('2.5'))},
            free_km=Decimal('1'),
            vat_rate=Decimal('0.18'),
            commission_rate=Decimal('0.25'),
        )
        price = calculator.price(Decimal('0.8'), 'motorcycle')
        self.assertEqual(price.billable_km, Decimal('0.00'))
        self.assertEqual(price.price_before_vat, Decimal('70.00'))

    def test_night_multiplier_applied_before_vat(self):
        price = self.calculator.price(Decimal('10'), 'motorcycle', is_night_window=True)
        # (70 + 30) * 1.5 = 150 -> 177 with VAT
        self.assertEqual(price.price_before_vat, Decimal('150.00'))
        self.assertEqual(price.total, Decimal('177.00'))
        self.assertTrue(price.is_night_window)

    def test_unknown_vehicle_rejected(self):
        with self.assertRaises(ValueError):
            self.calculator.price(Decimal('5'), 'hovercraft')

    def test_negative_distance_rejected(self):
        with self.assertRaises(ValueError):
            self.calculator.price(Decimal('-1'), 'motorcycle')

    def test_override_backs_vat_out_of_total(self):
        """Operator override of 200: VAT backed out, split by the usual rule."""
        price = self.calculator.price_override(Decimal('200'), Decimal('12'), 'motorcycle')

        self.assertTrue(price.overridden)
        self.assertEqual(price.total, Decimal('200.00'))
        self.assertEqual(price.price_before_vat, Decimal('169.49'))
        self.assertEqual(price.vat, Decimal('30.51'))
        self.assertEqual(price.commission, Decimal('50.00'))
        self.assertEqual(price.payout, Decimal('150.00'))

    def test_override_must_be_positive(self):
        with self.assertRaises(ValueError):
            self.calculator.price_override(Decimal('0'), Decimal('12'), 'motorcycle')

    def test_as_order_fields(self):
        fields = self.calculator.price(Decimal('12'), 'motorcycle').as_order_fields()
        self.assertEqual(fields['total_price'], Decimal('126.00'))
        self.assertEqual(fields['courier_payout'], Decimal('95.00'))
        self.assertFalse(fields['price_overridden'])

    @override_settings(
        PRICING_TARIFFS={'van': {'base': '120', 'per_km': '3.0'}},
        PRICING_FREE_KM='1',
        PRICING_VAT_RATE='0.18',
        PRICING_COMMISSION_RATE='0.25',
        PRICING_NIGHT_MULTIPLIER='1.5',
    )
    def test_from_settings(self):
        calculator = PricingCalculator.from_settings()
        self.assertEqual(calculator.get_tariff('van'), Tariff(Decimal('120'), Decimal('3.0')))
        self.assertEqual(calculator.free_km, Decimal('1'))


class TestNightWindow(SimpleTestCase):

    def test_window_wrapping_midnight(self):
        self.assertTrue(is_night_time(datetime(2026, 5, 1, 23, 0), 22, 6))
        self.assertTrue(is_night_time(datetime(2026, 5, 1, 2, 30), 22, 6))
        self.assertFalse(is_night_time(datetime(2026, 5, 1, 6, 0), 22, 6))
        self.assertFalse(is_night_time(datetime(2026, 5, 1, 14, 0), 22, 6))

    def test_window_within_one_day(self):
        self.assertTrue(is_night_time(datetime(2026, 5, 1, 1, 0), 0, 5))
        self.assertFalse(is_night_time(datetime(2026, 5, 1, 5, 0), 0, 5))


class TestDistanceEstimator(SimpleTestCase):
    """Tests for the Distance Matrix client (requests mocked)."""

    def _response(self, payload):
        response = MagicMock()
        response.json.return_value = payload
        response.raise_for_status.return_value = None
        return response

    def test_missing_api_key(self):
        with self.assertRaises(DistanceUnavailable):
            DistanceEstimator(api_key='').estimate_km('A', 'B')

    @patch('logistics.services.distance.requests.get')
    def test_meters_converted_to_km(self, mock_get):
        mock_get.return_value = self._response({
            'status': 'OK',
            'rows': [{'elements': [{'status': 'OK', 'distance': {'value': 12400}}]}],
        })
        km = DistanceEstimator(api_key='test-key').estimate_km('Herzl 10', 'Dizengoff 50')

        self.assertEqual(km, Decimal('12.40'))
        self.assertEqual(mock_get.call_args.kwargs['params']['origins'], 'Herzl 10')

    @patch('logistics.services.distance.requests.get')
    def test_no_route(self, mock_get):
        mock_get.return_value = self._response({
            'status': 'OK',
            'rows': [{'elements': [{'status': 'ZERO_RESULTS'}]}],
        })
        with self.assertRaises(DistanceUnavailable):
            DistanceEstimator(api_key='test-key').estimate_km('A', 'B')

    @patch('logistics.services.distance.requests.get')
    def test_network_error(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("down")
        with self.assertRaises(DistanceUnavailable):
            DistanceEstimator(api_key='test-key').estimate_km('A', 'B')

    @patch('logistics.services.distance.requests.get')
    def test_malformed_response(self, mock_get):
        mock_get.return_value = self._response({'status': 'OK', 'rows': []})
        with self.assertRaises(DistanceUnavailable):
            DistanceEstimator(api_key='test-key').estimate_km('A', 'B')
