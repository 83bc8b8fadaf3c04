"""
CITYDROP Order Lifecycle Tests
===============================

Tests for:
1. Order creation (pricing, numbering, distance lookup)
2. Transitions and their history rows
3. Failure classification (stale vs invalid, courier scoping)
4. Cancel rules and auto-expiry
5. Domain events after commit
"""

from decimal import Decimal
from unittest.mock import MagicMock

from django.test import TestCase

from core.exceptions import (
    DistanceUnavailable,
    IntegrityViolation,
    InvalidTransition,
    NotAssignedCourier,
    OrderNotFound,
    StaleState,
)
from finance.models import LedgerEntry, LedgerEntryKind
from logistics.events import order_transitioned
from logistics.models import ActorType, Order, OrderStatus
from logistics.services import claims, lifecycle
from logistics.tests.helpers import (
    age_publication,
    make_courier,
    make_operator,
    make_order,
    make_published_order,
)


class TestOrderCreation(TestCase):
    """Tests for create_order."""

    def setUp(self):
        self.operator = make_operator()

    def test_order_priced_at_creation(self):
        """5 km motorcycle by day: 95 total, 23 commission, 72 payout."""
        order = make_order(created_by=self.operator)

        self.assertEqual(order.status, OrderStatus.NEW)
        self.assertEqual(order.total_price, Decimal('95.00'))
        self.assertEqual(order.commission, Decimal('23.00'))
        self.assertEqual(order.courier_payout, Decimal('72.00'))
        self.assertEqual(order.commission + order.courier_payout, order.total_price)
        self.assertIsNone(order.courier)
        self.assertIsNotNone(order.created_at)

    def test_order_numbers_are_sequential(self):
        first = make_order()
        second = make_order()
        self.assertEqual(first.order_number, 'CD-000001')
        self.assertEqual(second.order_number, 'CD-000002')

    def test_creation_writes_new_history_entry(self):
        order = make_order(created_by=self.operator)
        entry = order.history.get()

        self.assertEqual(entry.status, OrderStatus.NEW)
        self.assertEqual(entry.from_status, '')
        self.assertEqual(entry.actor_type, ActorType.OPERATOR)
        self.assertEqual(entry.actor_id, str(self.operator.pk))

    def test_price_override(self):
        order = make_order(override_price=Decimal('200'))
        self.assertTrue(order.price_overridden)
        self.assertEqual(order.total_price, Decimal('200.00'))
        self.assertEqual(order.commission, Decimal('50.00'))
        self.assertEqual(order.courier_payout, Decimal('150.00'))

    def test_distance_from_estimator(self):
        estimator = MagicMock()
        estimator.estimate_km.return_value = Decimal('5.00')

        order = make_order(distance_km=None, estimator=estimator)

        estimator.estimate_km.assert_called_once_with('Herzl 10, Tel Aviv', 'Dizengoff 50, Tel Aviv')
        self.assertEqual(order.distance_km, Decimal('5.00'))
        self.assertEqual(order.total_price, Decimal('95.00'))

    def test_estimator_failure_creates_nothing(self):
        estimator = MagicMock()
        estimator.estimate_km.side_effect = DistanceUnavailable("down")

        with self.assertRaises(DistanceUnavailable):
            make_order(distance_km=None, estimator=estimator)
        self.assertEqual(Order.objects.count(), 0)

    def test_non_terminal_order_cannot_be_deleted(self):
        order = make_order()
        with self.assertRaises(InvalidTransition):
            order.delete()

    def test_history_is_immutable(self):
        entry = make_order().history.get()
        entry.note = 'rewritten'
        with self.assertRaises(IntegrityViolation):
            entry.save()
        with self.assertRaises(IntegrityViolation):
            entry.delete()


class TestTransitions(TestCase):
    """Tests for publish / pickup / deliver."""

    def setUp(self):
        self.courier = make_courier()
        self.other = make_courier(phone='+972501000002', full_name='Other Courier')

    def _assigned_order(self):
        order = make_published_order()
        result = claims.claim(order.pk, self.courier.pk)
        self.assertTrue(result.ok)
        return result.order

    def test_full_happy_path(self):
        order = self._assigned_order()
        order = lifecycle.pickup(order.pk, self.courier.pk)
        self.assertEqual(order.status, OrderStatus.PICKED_UP)

        order = lifecycle.deliver(order.pk, self.courier.pk)
        self.assertEqual(order.status, OrderStatus.DELIVERED)

        statuses = list(order.history.values_list('status', flat=True))
        self.assertEqual(statuses, ['new', 'published', 'assigned', 'picked_up', 'delivered'])

        # Timestamps reached are set and increasing
        self.assertTrue(
            order.created_at <= order.published_at <= order.assigned_at
            <= order.picked_up_at <= order.delivered_at
        )
        self.assertIsNone(order.cancelled_at)

    def test_deliver_credits_courier(self):
        order = self._assigned_order()
        lifecycle.pickup(order.pk, self.courier.pk)
        lifecycle.deliver(order.pk, self.courier.pk)

        self.courier.refresh_from_db()
        self.assertEqual(self.courier.balance, Decimal('72.00'))
        self.assertEqual(self.courier.total_earned, Decimal('72.00'))
        self.assertEqual(self.courier.total_deliveries, 1)

    def test_deliver_retry_credits_once(self):
        """A retried deliver is stale and never credits twice."""
        order = self._assigned_order()
        lifecycle.pickup(order.pk, self.courier.pk)
        lifecycle.deliver(order.pk, self.courier.pk)

        with self.assertRaises(StaleState):
            lifecycle.deliver(order.pk, self.courier.pk)

        self.courier.refresh_from_db()
        self.assertEqual(self.courier.balance, Decimal('72.00'))
        self.assertEqual(
            LedgerEntry.objects.filter(order=order, kind=LedgerEntryKind.DELIVERY_CREDIT).count(), 1
        )
        self.assertEqual(order.history.filter(status=OrderStatus.DELIVERED).count(), 1)

    def test_publish_twice_is_stale(self):
        order = make_published_order()
        with self.assertRaises(StaleState):
            lifecycle.publish(order.pk)
        self.assertEqual(order.history.filter(status=OrderStatus.PUBLISHED).count(), 1)

    def test_pickup_on_new_order_is_invalid(self):
        order = make_order()
        with self.assertRaises(InvalidTransition) as ctx:
            lifecycle.pickup(order.pk, self.courier.pk)
        self.assertNotIsInstance(ctx.exception, NotAssignedCourier)

    def test_deliver_before_pickup_is_invalid(self):
        order = self._assigned_order()
        with self.assertRaises(InvalidTransition):
            lifecycle.deliver(order.pk, self.courier.pk)

    def test_pickup_after_cancel_is_stale(self):
        order = self._assigned_order()
        lifecycle.cancel(order.pk, reason='customer changed mind')

        with self.assertRaises(StaleState):
            lifecycle.pickup(order.pk, self.courier.pk)

    def test_other_courier_cannot_pickup(self):
        order = self._assigned_order()
        with self.assertRaises(NotAssignedCourier):
            lifecycle.pickup(order.pk, self.other.pk)

        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.ASSIGNED)

    def test_unknown_order(self):
        import uuid
        with self.assertRaises(OrderNotFound):
            lifecycle.publish(uuid.uuid4())


class TestCancel(TestCase):
    """Tests for cancel rules."""

    def setUp(self):
        self.courier = make_courier()

    def test_cancel_new_order(self):
        order = make_order()
        order = lifecycle.cancel(order.pk, reason='duplicate')

        self.assertEqual(order.status, OrderStatus.CANCELLED)
        self.assertEqual(order.cancel_reason, 'duplicate')
        self.assertIsNotNone(order.cancelled_at)
        entry = order.history.get(status=OrderStatus.CANCELLED)
        self.assertEqual(entry.from_status, OrderStatus.NEW)

    def test_cancel_assigned_order(self):
        order = make_published_order()
        claims.claim(order.pk, self.courier.pk)
        order = lifecycle.cancel(order.pk)
        self.assertEqual(order.status, OrderStatus.CANCELLED)

    def test_cancel_cancelled_is_noop(self):
        order = make_order()
        lifecycle.cancel(order.pk)
        history_count = order.history.count()

        again = lifecycle.cancel(order.pk)

        self.assertEqual(again.status, OrderStatus.CANCELLED)
        self.assertEqual(order.history.count(), history_count)

    def test_cancel_delivered_is_invalid(self):
        order = make_published_order()
        claims.claim(order.pk, self.courier.pk)
        lifecycle.pickup(order.pk, self.courier.pk)
        lifecycle.deliver(order.pk, self.courier.pk)

        with self.assertRaises(InvalidTransition):
            lifecycle.cancel(order.pk)

        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.DELIVERED)

    def test_courier_cannot_cancel(self):
        order = make_order()
        with self.assertRaises(InvalidTransition):
            lifecycle.cancel(order.pk, actor_type=ActorType.COURIER, actor_id=self.courier.pk)


class TestExpire(TestCase):
    """Tests for auto-expiry of a single order."""

    def test_expire_old_published_order(self):
        order = make_published_order()
        age_publication(order, 45)

        order = lifecycle.expire(order.pk, threshold_minutes=30)

        self.assertEqual(order.status, OrderStatus.CANCELLED)
        self.assertEqual(order.cancel_reason, 'expired')
        entry = order.history.get(status=OrderStatus.CANCELLED)
        self.assertEqual(entry.actor_type, ActorType.SYSTEM)

    def test_recent_order_not_expired(self):
        order = make_published_order()
        with self.assertRaises(StaleState):
            lifecycle.expire(order.pk, threshold_minutes=30)
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.PUBLISHED)

    def test_claimed_order_not_expired(self):
        order = make_published_order()
        age_publication(order, 45)
        claims.claim(order.pk, make_courier().pk)

        with self.assertRaises(StaleState):
            lifecycle.expire(order.pk, threshold_minutes=30)


class TestOrderEvents(TestCase):
    """Events go out once per transition, after commit, and receiver errors stay contained."""

    def setUp(self):
        self.events = []
        order_transitioned.connect(self._collect, dispatch_uid='test-collector')
        self.addCleanup(order_transitioned.disconnect, dispatch_uid='test-collector')

    def _collect(self, sender, event, **kwargs):
        self.events.append(event)

    def test_event_per_transition(self):
        with self.captureOnCommitCallbacks(execute=True):
            order = make_order()
        with self.captureOnCommitCallbacks(execute=True):
            lifecycle.publish(order.pk, operator_id=7)

        self.assertEqual([e.to_status for e in self.events], ['new', 'published'])
        published = self.events[1]
        self.assertEqual(published.from_status, OrderStatus.NEW)
        self.assertEqual(published.actor_type, ActorType.OPERATOR)
        self.assertEqual(published.actor_id, '7')
        self.assertEqual(published.order_number, order.order_number)

    def test_no_event_for_failed_transition(self):
        order = make_published_order()
        with self.captureOnCommitCallbacks(execute=True):
            with self.assertRaises(StaleState):
                lifecycle.publish(order.pk)
        self.assertEqual(self.events, [])

    def test_no_event_for_cancel_noop(self):
        order = lifecycle.cancel(make_order().pk)
        with self.captureOnCommitCallbacks(execute=True):
            lifecycle.cancel(order.pk)
        self.assertEqual(self.events, [])

    def test_failing_receiver_does_not_break_transition(self):
        def broken(sender, event, **kwargs):
            raise RuntimeError("bot offline")

        order_transitioned.connect(broken, dispatch_uid='test-broken')
        self.addCleanup(order_transitioned.disconnect, dispatch_uid='test-broken')

        order = make_order()
        with self.captureOnCommitCallbacks(execute=True):
            order = lifecycle.publish(order.pk)

        self.assertEqual(order.status, OrderStatus.PUBLISHED)
        self.assertEqual(len(self.events), 1)
