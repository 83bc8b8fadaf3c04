"""
CITYDROP Finance Tests
=======================

Tests for:
1. Ledger credit / debit / adjust
2. Reconciliation (never auto-corrects)
3. Payout request workflow
4. Ledger, wallet and payout API
5. Concurrent debits on backends with row locking
"""

import threading
import uuid
from decimal import Decimal
from unittest import skipUnless

from django.db import connection
from django.test import TestCase, TransactionTestCase, override_settings
from rest_framework import status
from rest_framework.test import APITestCase

from core.exceptions import (
    CourierNotFound,
    InsufficientBalance,
    IntegrityViolation,
    InvalidTransition,
    PayoutBelowMinimum,
    PayoutNotFound,
)
from core.models import Courier
from finance import services
from finance.models import LedgerEntry, LedgerEntryKind, PayoutStatus
from finance.tasks import reconcile_courier_balances
from logistics.tests.helpers import make_courier, make_operator, make_order


class TestLedger(TestCase):
    """Tests for credit, debit and adjust."""

    def setUp(self):
        self.courier = make_courier()
        self.order = make_order()

    # ==========================================
    # Credit
    # ==========================================

    def test_credit_updates_balance_and_counters(self):
        entry = services.credit(self.courier.pk, self.order, Decimal('72'))

        self.assertEqual(entry.kind, LedgerEntryKind.DELIVERY_CREDIT)
        self.assertEqual(entry.amount, Decimal('72.00'))
        self.assertEqual(entry.balance_after, Decimal('72.00'))
        self.assertEqual(entry.reference, self.order.order_number)

        self.courier.refresh_from_db()
        self.assertEqual(self.courier.balance, Decimal('72.00'))
        self.assertEqual(self.courier.total_earned, Decimal('72.00'))
        self.assertEqual(self.courier.total_deliveries, 1)

    def test_second_credit_for_same_order_refused(self):
        """Double credit is an integrity violation and changes nothing."""
        services.credit(self.courier.pk, self.order, Decimal('72'))

        with self.assertLogs('finance.services', level='CRITICAL'):
            with self.assertRaises(IntegrityViolation):
                services.credit(self.courier.pk, self.order, Decimal('72'))

        self.courier.refresh_from_db()
        self.assertEqual(self.courier.balance, Decimal('72.00'))
        self.assertEqual(self.courier.total_deliveries, 1)
        self.assertEqual(LedgerEntry.objects.filter(order=self.order).count(), 1)

    def test_credit_unknown_courier(self):
        with self.assertRaises(CourierNotFound):
            services.credit(uuid.uuid4(), self.order, Decimal('72'))

    # ==========================================
    # Debit
    # ==========================================

    def test_debit(self):
        services.credit(self.courier.pk, self.order, Decimal('72'))

        entry = services.debit(self.courier.pk, Decimal('50'), reference='payout:test')

        self.assertEqual(entry.amount, Decimal('-50.00'))
        self.assertEqual(entry.balance_after, Decimal('22.00'))
        self.courier.refresh_from_db()
        self.assertEqual(self.courier.balance, Decimal('22.00'))
        # Lifetime earnings are not touched by payouts
        self.assertEqual(self.courier.total_earned, Decimal('72.00'))

    def test_debit_never_overdraws(self):
        services.credit(self.courier.pk, self.order, Decimal('72'))

        with self.assertRaises(InsufficientBalance):
            services.debit(self.courier.pk, Decimal('72.01'))

        self.courier.refresh_from_db()
        self.assertEqual(self.courier.balance, Decimal('72.00'))
        self.assertEqual(LedgerEntry.objects.filter(courier=self.courier).count(), 1)

    def test_debit_exact_balance(self):
        services.credit(self.courier.pk, self.order, Decimal('72'))
        services.debit(self.courier.pk, Decimal('72'))

        self.courier.refresh_from_db()
        self.assertEqual(self.courier.balance, Decimal('0.00'))

    def test_debit_must_be_positive(self):
        with self.assertRaises(ValueError):
            services.debit(self.courier.pk, Decimal('0'))

    def test_debit_unknown_courier(self):
        with self.assertRaises(CourierNotFound):
            services.debit(uuid.uuid4(), Decimal('10'))

    # ==========================================
    # Adjust
    # ==========================================

    def test_positive_adjustment(self):
        operator = make_operator()
        entry = services.adjust(self.courier.pk, Decimal('15'), note='tip from customer', actor=operator)

        self.assertEqual(entry.kind, LedgerEntryKind.MANUAL_ADJUSTMENT)
        self.assertEqual(entry.created_by, operator)
        self.courier.refresh_from_db()
        self.assertEqual(self.courier.balance, Decimal('15.00'))
        # Adjustments are not earnings
        self.assertEqual(self.courier.total_earned, Decimal('0.00'))

    def test_negative_adjustment_is_guarded(self):
        services.adjust(self.courier.pk, Decimal('10'), note='bonus')

        with self.assertRaises(InsufficientBalance):
            services.adjust(self.courier.pk, Decimal('-20'), note='damaged parcel')

        entry = services.adjust(self.courier.pk, Decimal('-10'), note='damaged parcel')
        self.assertEqual(entry.amount, Decimal('-10.00'))
        self.assertEqual(entry.kind, LedgerEntryKind.MANUAL_ADJUSTMENT)

    def test_adjustment_needs_note_and_amount(self):
        with self.assertRaises(ValueError):
            services.adjust(self.courier.pk, Decimal('10'), note='')
        with self.assertRaises(ValueError):
            services.adjust(self.courier.pk, Decimal('0'), note='nothing')

    def test_entries_are_immutable(self):
        entry = services.credit(self.courier.pk, self.order, Decimal('72'))
        entry.amount = Decimal('100')
        with self.assertRaises(IntegrityViolation):
            entry.save()
        with self.assertRaises(IntegrityViolation):
            entry.delete()


class TestReconcile(TestCase):
    """Tests for reconcile and the nightly task."""

    def setUp(self):
        self.courier = make_courier()
        services.credit(self.courier.pk, make_order(), Decimal('72'))
        services.adjust(self.courier.pk, Decimal('-2'), note='late fee')

    def test_clean_ledger(self):
        report = services.reconcile(self.courier.pk)

        self.assertTrue(report.ok)
        self.assertEqual(report.ledger_balance, Decimal('70.00'))
        self.assertEqual(report.ledger_earned, Decimal('72.00'))
        self.assertEqual(report.ledger_deliveries, 1)

    def test_mismatch_raises_and_keeps_balance(self):
        Courier.objects.filter(pk=self.courier.pk).update(balance=Decimal('500.00'))

        with self.assertLogs('finance.services', level='CRITICAL'):
            with self.assertRaises(IntegrityViolation) as ctx:
                services.reconcile(self.courier.pk)

        report = ctx.exception.context['report']
        self.assertFalse(report.ok)
        self.assertEqual(report.ledger_balance, Decimal('70.00'))

        # Never auto-corrected
        self.courier.refresh_from_db()
        self.assertEqual(self.courier.balance, Decimal('500.00'))

    def test_unknown_courier(self):
        with self.assertRaises(CourierNotFound):
            services.reconcile(uuid.uuid4())

    def test_task_reports_mismatches(self):
        make_courier(phone='+972501000009', full_name='Clean Courier')
        Courier.objects.filter(pk=self.courier.pk).update(total_deliveries=3)

        result = reconcile_courier_balances()

        self.assertEqual(result['checked'], 2)
        self.assertEqual(len(result['mismatches']), 1)
        self.assertEqual(result['mismatches'][0]['courier_id'], str(self.courier.pk))
        self.assertEqual(result['mismatches'][0]['ledger_deliveries'], 1)


@override_settings(MIN_PAYOUT_AMOUNT='50')
class TestPayoutWorkflow(TestCase):
    """Tests for request -> approve/reject -> complete."""

    def setUp(self):
        self.operator = make_operator()
        self.courier = make_courier()
        services.credit(self.courier.pk, make_order(), Decimal('72'))

    def test_full_payout(self):
        payout = services.request_payout(self.courier.pk, Decimal('60'), 'bit', {'phone': '0501234567'})
        self.assertEqual(payout.status, PayoutStatus.PENDING)

        # Requesting does not move money
        self.courier.refresh_from_db()
        self.assertEqual(self.courier.balance, Decimal('72.00'))

        payout = services.approve_payout(payout.pk, operator=self.operator)
        self.assertEqual(payout.status, PayoutStatus.APPROVED)
        self.assertEqual(payout.processed_by, self.operator)

        payout = services.complete_payout(payout.pk, operator=self.operator)
        self.assertEqual(payout.status, PayoutStatus.COMPLETED)
        self.assertIsNotNone(payout.completed_at)

        self.courier.refresh_from_db()
        self.assertEqual(self.courier.balance, Decimal('12.00'))
        entry = payout.ledger_entries.get()
        self.assertEqual(entry.amount, Decimal('-60.00'))
        self.assertEqual(entry.reference, f'payout:{payout.pk}')
        self.assertTrue(services.reconcile(self.courier.pk).ok)

    def test_below_minimum(self):
        with self.assertRaises(PayoutBelowMinimum):
            services.request_payout(self.courier.pk, Decimal('40'), 'bit')

    def test_more_than_balance(self):
        with self.assertRaises(InsufficientBalance):
            services.request_payout(self.courier.pk, Decimal('100'), 'bit')

    def test_reject(self):
        payout = services.request_payout(self.courier.pk, Decimal('60'), 'cash')
        payout = services.reject_payout(payout.pk, operator=self.operator, reason='use bank transfer')

        self.assertEqual(payout.status, PayoutStatus.REJECTED)
        self.assertEqual(payout.admin_notes, 'use bank transfer')
        with self.assertRaises(InvalidTransition):
            services.approve_payout(payout.pk)

    def test_complete_requires_approval(self):
        payout = services.request_payout(self.courier.pk, Decimal('60'), 'bit')
        with self.assertRaises(InvalidTransition):
            services.complete_payout(payout.pk)

    def test_malformed_payout_id(self):
        for decide in (services.approve_payout, services.reject_payout, services.complete_payout):
            with self.assertRaises(PayoutNotFound):
                decide('not-a-uuid', operator=self.operator)

    def test_complete_twice_debits_once(self):
        payout = services.request_payout(self.courier.pk, Decimal('60'), 'bit')
        services.approve_payout(payout.pk)
        services.complete_payout(payout.pk)

        with self.assertRaises(InvalidTransition):
            services.complete_payout(payout.pk)

        self.courier.refresh_from_db()
        self.assertEqual(self.courier.balance, Decimal('12.00'))

    def test_complete_with_drained_balance_changes_nothing(self):
        payout = services.request_payout(self.courier.pk, Decimal('60'), 'bit')
        services.approve_payout(payout.pk)
        services.adjust(self.courier.pk, Decimal('-30'), note='damaged parcel')

        with self.assertRaises(InsufficientBalance):
            services.complete_payout(payout.pk)

        payout.refresh_from_db()
        self.assertEqual(payout.status, PayoutStatus.APPROVED)
        self.courier.refresh_from_db()
        self.assertEqual(self.courier.balance, Decimal('42.00'))


@override_settings(MIN_PAYOUT_AMOUNT='50')
class TestFinanceAPI(APITestCase):
    """Tests for ledger, wallet and payout endpoints."""

    def setUp(self):
        self.operator = make_operator()
        self.courier = make_courier(with_user=True)
        self.order = make_order()
        services.credit(self.courier.pk, self.order, Decimal('72'))

    def test_operator_ledger(self):
        self.client.force_authenticate(user=self.operator)
        response = self.client.get(f'/api/couriers/{self.courier.pk}/ledger/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['entries']), 1)
        self.assertEqual(response.data['entries'][0]['order_number'], self.order.order_number)

    def test_operator_adjust(self):
        self.client.force_authenticate(user=self.operator)
        response = self.client.post(
            f'/api/couriers/{self.courier.pk}/adjust/',
            {'amount': '-100', 'note': 'chargeback'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'insufficient_balance')

        response = self.client.post(
            f'/api/couriers/{self.courier.pk}/adjust/',
            {'amount': '-2', 'note': 'late fee'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['balance_after'], '70.00')

    def test_operator_reconcile(self):
        self.client.force_authenticate(user=self.operator)

        response = self.client.post(f'/api/couriers/{self.courier.pk}/reconcile/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['report']['ok'])

        Courier.objects.filter(pk=self.courier.pk).update(balance=Decimal('1.00'))
        with self.assertLogs('finance.services', level='CRITICAL'):
            response = self.client.post(f'/api/couriers/{self.courier.pk}/reconcile/')
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data['code'], 'integrity_violation')
        self.assertEqual(response.data['report']['ledger_balance'], '72.00')

    def test_courier_cannot_use_operator_endpoints(self):
        self.client.force_authenticate(user=self.courier.user)
        response = self.client.get(f'/api/couriers/{self.courier.pk}/ledger/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_wallet(self):
        self.client.force_authenticate(user=self.courier.user)

        response = self.client.get('/api/wallet/balance/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['balance'], '72.00')
        self.assertEqual(response.data['total_deliveries'], 1)
        self.assertEqual(response.data['pending_payouts'], '0.00')

        response = self.client.get('/api/wallet/history/')
        self.assertEqual(len(response.data), 1)

    def test_payout_flow_over_http(self):
        self.client.force_authenticate(user=self.courier.user)
        response = self.client.post('/api/payout-requests/', {
            'amount': '60',
            'payment_method': 'bank_transfer',
            'account_info': {'iban': 'IL620108000000099999999'},
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        payout_id = response.data['id']

        response = self.client.get('/api/wallet/balance/')
        self.assertEqual(response.data['pending_payouts'], '60.00')

        self.client.force_authenticate(user=self.operator)
        response = self.client.post(f'/api/payout-requests/{payout_id}/approve/', {}, format='json')
        self.assertEqual(response.data['status'], 'approved')
        response = self.client.post(f'/api/payout-requests/{payout_id}/complete/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'completed')

        self.courier.refresh_from_db()
        self.assertEqual(self.courier.balance, Decimal('12.00'))

    def test_payout_below_minimum_over_http(self):
        self.client.force_authenticate(user=self.courier.user)
        response = self.client.post('/api/payout-requests/', {
            'amount': '10',
            'payment_method': 'cash',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'payout_below_minimum')

    def test_courier_cannot_approve(self):
        payout = services.request_payout(self.courier.pk, Decimal('60'), 'bit')
        self.client.force_authenticate(user=self.courier.user)
        response = self.client.post(f'/api/payout-requests/{payout.pk}/approve/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_payout_decision_on_malformed_id(self):
        self.client.force_authenticate(user=self.operator)

        for route in ('approve', 'reject', 'complete'):
            response = self.client.post(f'/api/payout-requests/not-a-uuid/{route}/', {}, format='json')

            self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
            self.assertEqual(response.data['code'], 'payout_not_found')


@skipUnless(
    connection.features.has_select_for_update_skip_locked,
    "Concurrent debits need row locking (PostgreSQL)"
)
class TestConcurrentDebits(TransactionTestCase):
    """Several debits race for one balance that cannot cover them all."""

    DEBITS = 5

    def setUp(self):
        self.courier = make_courier()
        services.credit(self.courier.pk, make_order(), Decimal('72'))

    def test_balance_never_goes_negative(self):
        barrier = threading.Barrier(self.DEBITS)
        results = []
        lock = threading.Lock()

        def attempt(i):
            try:
                barrier.wait()
                try:
                    services.debit(self.courier.pk, Decimal('20'), reference=f'race:{i}')
                    outcome = 'debited'
                except InsufficientBalance:
                    outcome = 'refused'
                with lock:
                    results.append(outcome)
            finally:
                connection.close()

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(self.DEBITS)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        # 72 covers three debits of 20
        self.assertEqual(results.count('debited'), 3)
        self.assertEqual(results.count('refused'), self.DEBITS - 3)

        self.courier.refresh_from_db()
        self.assertGreaterEqual(self.courier.balance, Decimal('0'))
        self.assertEqual(self.courier.balance, Decimal('12.00'))
        self.assertEqual(
            LedgerEntry.objects.filter(courier=self.courier, kind=LedgerEntryKind.PAYOUT_DEBIT).count(), 3
        )
        self.assertTrue(services.reconcile(self.courier.pk).ok)
