"""
CITYDROP Expiry Sweeper Tests
==============================

Tests for:
1. Batch expiry of unclaimed published orders
2. Sweeper vs claim: exactly one of them wins
3. Celery task wrapper
4. Real concurrent expiry and claim on backends with row locking
"""

import threading
from unittest import skipUnless

from django.db import connection
from django.test import TestCase, TransactionTestCase, override_settings

from core.exceptions import StaleState
from logistics.models import ActorType, OrderStatus
from logistics.services import claims, lifecycle
from logistics.services.claims import ClaimOutcome
from logistics.services.sweeper import expire_published_older_than
from logistics.tasks import expire_stale_orders
from logistics.tests.helpers import age_publication, make_courier, make_order, make_published_order


class TestSweeper(TestCase):
    """Tests for expire_published_older_than."""

    def setUp(self):
        self.courier = make_courier()

    def test_expires_only_old_published_orders(self):
        old = make_published_order()
        recent = make_published_order()
        draft = make_order()
        age_publication(old, 45)

        report = expire_published_older_than(30)

        self.assertEqual(report.expired, [old.order_number])
        self.assertEqual(report.expired_count, 1)

        old.refresh_from_db()
        recent.refresh_from_db()
        draft.refresh_from_db()
        self.assertEqual(old.status, OrderStatus.CANCELLED)
        self.assertEqual(old.cancel_reason, 'expired')
        self.assertEqual(recent.status, OrderStatus.PUBLISHED)
        self.assertEqual(draft.status, OrderStatus.NEW)

    def test_history_entry_for_expiry(self):
        order = make_published_order()
        age_publication(order, 45)

        expire_published_older_than(30)

        entry = order.history.get(status=OrderStatus.CANCELLED)
        self.assertEqual(entry.from_status, OrderStatus.PUBLISHED)
        self.assertEqual(entry.actor_type, ActorType.SYSTEM)
        self.assertIn('30 min', entry.note)

    def test_nothing_to_do(self):
        make_published_order()
        report = expire_published_older_than(30)
        self.assertEqual(report.expired, [])
        self.assertEqual(report.skipped, [])

    def test_second_run_is_harmless(self):
        order = make_published_order()
        age_publication(order, 45)

        expire_published_older_than(30)
        report = expire_published_older_than(30)

        self.assertEqual(report.expired_count, 0)
        self.assertEqual(order.history.filter(status=OrderStatus.CANCELLED).count(), 1)

    @override_settings(ORDER_EXPIRY_MINUTES=10)
    def test_threshold_defaults_to_setting(self):
        order = make_published_order()
        age_publication(order, 15)

        report = expire_published_older_than()

        self.assertEqual(report.expired, [order.order_number])

    # ==========================================
    # SWEEPER VS CLAIM
    # ==========================================

    def test_claim_before_sweep_keeps_order(self):
        order = make_published_order()
        age_publication(order, 45)

        result = claims.claim(order.pk, self.courier.pk)
        report = expire_published_older_than(30)

        self.assertEqual(result.outcome, ClaimOutcome.OK)
        self.assertEqual(report.expired_count, 0)
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.ASSIGNED)

    def test_sweep_before_claim_wins(self):
        order = make_published_order()
        age_publication(order, 45)

        expire_published_older_than(30)
        result = claims.claim(order.pk, self.courier.pk)

        self.assertEqual(result.outcome, ClaimOutcome.ALREADY_TAKEN)
        self.assertEqual(result.order.status, OrderStatus.CANCELLED)
        self.assertFalse(order.history.filter(status=OrderStatus.ASSIGNED).exists())

    def test_order_claimed_after_scan_is_skipped(self):
        """An order claimed between the scan and its update is reported as skipped."""
        order = make_published_order()
        age_publication(order, 45)

        real_expire = lifecycle.expire

        def claim_first(order_id, threshold_minutes=None):
            claims.claim(order_id, self.courier.pk)
            return real_expire(order_id, threshold_minutes)

        lifecycle.expire = claim_first
        self.addCleanup(setattr, lifecycle, 'expire', real_expire)

        report = expire_published_older_than(30)

        self.assertEqual(report.expired, [])
        self.assertEqual(report.skipped, [str(order.pk)])
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.ASSIGNED)


class TestExpireTask(TestCase):
    """The Celery task is a thin wrapper; call it directly."""

    def test_task_returns_counts(self):
        old = make_published_order()
        make_published_order()
        age_publication(old, 45)

        result = expire_stale_orders(threshold_minutes=30)

        self.assertEqual(result, {'expired': 1, 'skipped': 0})


@skipUnless(
    connection.features.has_select_for_update_skip_locked,
    "Concurrent expiry and claim need SELECT ... FOR UPDATE SKIP LOCKED (PostgreSQL)"
)
class TestConcurrentExpireAndClaim(TransactionTestCase):
    """The sweeper and a courier hit the same stale order at the same moment."""

    ROUNDS = 5

    def setUp(self):
        self.courier = make_courier()

    def race(self, order):
        barrier = threading.Barrier(2)
        results = {}

        def sweep():
            try:
                barrier.wait()
                try:
                    lifecycle.expire(order.pk, 30)
                    results['expired'] = True
                except StaleState:
                    results['expired'] = False
            finally:
                connection.close()

        def take():
            try:
                barrier.wait()
                results['claim'] = claims.claim(order.pk, self.courier.pk).outcome
            finally:
                connection.close()

        threads = [threading.Thread(target=sweep), threading.Thread(target=take)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def test_exactly_one_outcome(self):
        for _ in range(self.ROUNDS):
            order = make_published_order()
            age_publication(order, 45)

            results = self.race(order)

            claimed = results['claim'] == ClaimOutcome.OK
            self.assertNotEqual(results['expired'], claimed)

            order.refresh_from_db()
            expected = OrderStatus.ASSIGNED if claimed else OrderStatus.CANCELLED
            self.assertEqual(order.status, expected)
            self.assertEqual(
                order.history.filter(status__in=[OrderStatus.ASSIGNED, OrderStatus.CANCELLED]).count(), 1
            )
