"""
Order Lifecycle Engine for CITYDROP

Every status change except the claim itself goes through here. Each move is
one conditional UPDATE guarded on the allowed prior status; when it touches
zero rows the order is re-read to explain why (gone, already moved on by
someone else, or simply not a legal move).

    new       --operator:publish-->  published
    published --courier:claim-->     assigned      (see claims.py)
    published --system:expire-->     cancelled
    assigned  --courier:pickup-->    picked_up
    picked_up --courier:deliver-->   delivered     (+ ledger credit)
    any non-terminal --cancel-->     cancelled
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from core.exceptions import (
    InvalidTransition,
    NotAssignedCourier,
    OrderNotFound,
    StaleState,
)
from core.models import VehicleClass
from logistics.events import build_order_event, emit_order_event
from logistics.models import (
    ActorType,
    Order,
    OrderNumberSequence,
    OrderPriority,
    OrderStatus,
    OrderStatusHistory,
    STATUS_TIMESTAMP_FIELDS,
    TERMINAL_STATUSES,
)
from logistics.services.distance import DistanceEstimator
from logistics.services.pricing import PricingCalculator, is_night_time

logger = logging.getLogger(__name__)


# ===========================================
# TRANSITION TABLE
# ===========================================

@dataclass(frozen=True)
class Transition:
    name: str
    sources: frozenset
    target: str
    actors: frozenset


PUBLISH = Transition(
    'publish',
    frozenset({OrderStatus.NEW}),
    OrderStatus.PUBLISHED,
    frozenset({ActorType.OPERATOR}),
)
CLAIM = Transition(
    'claim',
    frozenset({OrderStatus.PUBLISHED}),
    OrderStatus.ASSIGNED,
    frozenset({ActorType.COURIER}),
)
EXPIRE = Transition(
    'expire',
    frozenset({OrderStatus.PUBLISHED}),
    OrderStatus.CANCELLED,
    frozenset({ActorType.SYSTEM}),
)
PICKUP = Transition(
    'pickup',
    frozenset({OrderStatus.ASSIGNED}),
    OrderStatus.PICKED_UP,
    frozenset({ActorType.COURIER}),
)
DELIVER = Transition(
    'deliver',
    frozenset({OrderStatus.PICKED_UP}),
    OrderStatus.DELIVERED,
    frozenset({ActorType.COURIER}),
)
CANCEL = Transition(
    'cancel',
    frozenset({
        OrderStatus.NEW,
        OrderStatus.PUBLISHED,
        OrderStatus.ASSIGNED,
        OrderStatus.PICKED_UP,
    }),
    OrderStatus.CANCELLED,
    frozenset({ActorType.OPERATOR, ActorType.SYSTEM}),
)

TRANSITIONS = {t.name: t for t in (PUBLISH, CLAIM, EXPIRE, PICKUP, DELIVER, CANCEL)}

# Forward progress of a healthy order; cancelled sits outside it
PROGRESSION = [
    OrderStatus.NEW,
    OrderStatus.PUBLISHED,
    OrderStatus.ASSIGNED,
    OrderStatus.PICKED_UP,
    OrderStatus.DELIVERED,
]


def _rank(status: str) -> int:
    return PROGRESSION.index(status)


def classify_failure(order: Order, transition: Transition):
    """
    Build the error for a conditional update that matched no row.

    StaleState when the order has already moved past every state the
    transition could start from (or ended), InvalidTransition otherwise.
    """
    current = order.status
    if current in TERMINAL_STATUSES:
        return StaleState(
            f"Order {order.order_number} is already {current}",
            order_id=str(order.id),
            current_status=current,
            transition=transition.name,
        )

    furthest_source = max(_rank(s) for s in transition.sources)
    if _rank(current) > furthest_source:
        return StaleState(
            f"Order {order.order_number} has already moved to {current}",
            order_id=str(order.id),
            current_status=current,
            transition=transition.name,
        )

    return InvalidTransition(
        f"Cannot {transition.name} order {order.order_number} while {current}",
        order_id=str(order.id),
        current_status=current,
        transition=transition.name,
    )


# ===========================================
# HELPERS
# ===========================================

def get_order(order_id) -> Order:
    try:
        return Order.objects.select_related('courier').get(pk=order_id)
    except (Order.DoesNotExist, ValueError, ValidationError):
        raise OrderNotFound(f"Order {order_id} not found")


def get_order_by_number(order_number: str) -> Order:
    try:
        return Order.objects.get(order_number=order_number)
    except Order.DoesNotExist:
        raise OrderNotFound(f"Order {order_number} not found")


def next_order_number(prefix: str = None) -> str:
    """
    Allocate the next human-facing order number.

    Must run inside the transaction that inserts the order.
    """
    prefix = prefix or settings.ORDER_NUMBER_PREFIX
    OrderNumberSequence.objects.get_or_create(prefix=prefix)
    OrderNumberSequence.objects.filter(prefix=prefix).update(last_value=F('last_value') + 1)
    value = OrderNumberSequence.objects.values_list('last_value', flat=True).get(prefix=prefix)
    return f"{prefix}-{value:06d}"


def record_transition(
    order: Order,
    from_status: Optional[str],
    actor_type: str,
    actor_id=None,
    note: str = "",
) -> OrderStatusHistory:
    """Append the history row and queue the after-commit event."""
    entry = OrderStatusHistory.objects.create(
        order=order,
        from_status=from_status or '',
        status=order.status,
        actor_type=actor_type,
        actor_id=str(actor_id or ''),
        note=note[:255],
    )
    emit_order_event(build_order_event(order, from_status, actor_type, actor_id, note))
    return entry


def conditional_update(order_id, transition: Transition, sources=None, filters=None, **changes) -> int:
    now = timezone.now()
    changes['status'] = transition.target
    changes[STATUS_TIMESTAMP_FIELDS[transition.target]] = now

    queryset = Order.objects.filter(pk=order_id, status__in=sources or transition.sources)
    if filters:
        queryset = queryset.filter(**filters)
    return queryset.update(**changes)


def _check_courier_scope(order: Order, courier_id, transition: Transition):
    if order.courier_id is not None and str(order.courier_id) != str(courier_id):
        raise NotAssignedCourier(
            f"Order {order.order_number} is not assigned to you",
            order_id=str(order.id),
            transition=transition.name,
        )


# ===========================================
# CREATION
# ===========================================

@transaction.atomic
def _insert_order(fields: dict, actor_type: str, actor_id) -> Order:
    order = Order(order_number=next_order_number(), **fields)
    order.save()
    record_transition(order, None, actor_type, actor_id, note="created")
    return order


def create_order(
    *,
    sender_name: str,
    sender_phone: str,
    pickup_address: str,
    receiver_name: str,
    receiver_phone: str,
    delivery_address: str,
    vehicle_class: str = VehicleClass.MOTORCYCLE,
    distance_km=None,
    override_price=None,
    is_night_window: bool = None,
    priority: str = OrderPriority.NORMAL,
    pickup_notes: str = "",
    delivery_notes: str = "",
    package_description: str = "",
    notes: str = "",
    created_by=None,
    actor_type: str = ActorType.OPERATOR,
    estimator: DistanceEstimator = None,
    calculator: PricingCalculator = None,
) -> Order:
    """
    Price and store a new order in status `new`.

    Distance comes from the caller or, when omitted, from the distance
    estimator. Estimator failures raise DistanceUnavailable before anything
    is written.
    """
    calculator = calculator or PricingCalculator.from_settings()

    if distance_km is None:
        estimator = estimator or DistanceEstimator()
        distance_km = estimator.estimate_km(pickup_address, delivery_address)

    if is_night_window is None:
        is_night_window = is_night_time()

    if override_price is not None:
        breakdown = calculator.price_override(override_price, distance_km, vehicle_class, is_night_window)
    else:
        breakdown = calculator.price(distance_km, vehicle_class, is_night_window)

    fields = {
        'sender_name': sender_name,
        'sender_phone': sender_phone,
        'pickup_address': pickup_address,
        'pickup_notes': pickup_notes,
        'receiver_name': receiver_name,
        'receiver_phone': receiver_phone,
        'delivery_address': delivery_address,
        'delivery_notes': delivery_notes,
        'package_description': package_description,
        'notes': notes,
        'priority': priority,
        'created_by': created_by,
        **breakdown.as_order_fields(),
    }

    actor_id = created_by.pk if created_by is not None else None
    order = _insert_order(fields, actor_type, actor_id)

    logger.info(
        f"[LIFECYCLE] Created {order.order_number}: {order.distance_km} km "
        f"{order.vehicle_class}, total {order.total_price} "
        f"(commission {order.commission}, payout {order.courier_payout})"
        f"{' [override]' if breakdown.overridden else ''}"
    )
    return order


# ===========================================
# TRANSITIONS
# ===========================================

@transaction.atomic
def publish(order_id, operator_id=None) -> Order:
    """Make a new order visible to the courier pool."""
    updated = conditional_update(order_id, PUBLISH)
    if not updated:
        raise classify_failure(get_order(order_id), PUBLISH)

    order = get_order(order_id)
    record_transition(order, OrderStatus.NEW, ActorType.OPERATOR, operator_id)
    logger.info(f"[LIFECYCLE] {order.order_number} published")
    return order


@transaction.atomic
def pickup(order_id, courier_id) -> Order:
    """Assigned courier has collected the package."""
    updated = conditional_update(order_id, PICKUP, filters={'courier_id': courier_id})
    if not updated:
        order = get_order(order_id)
        _check_courier_scope(order, courier_id, PICKUP)
        raise classify_failure(order, PICKUP)

    order = get_order(order_id)
    record_transition(order, OrderStatus.ASSIGNED, ActorType.COURIER, courier_id)
    logger.info(f"[LIFECYCLE] {order.order_number} picked up by courier {courier_id}")
    return order


@transaction.atomic
def deliver(order_id, courier_id) -> Order:
    """
    Assigned courier has dropped the package off.

    The courier payout is credited in the same transaction; a retry finds the
    order already delivered and raises StaleState without a second credit.
    """
    from finance.services import credit

    updated = conditional_update(order_id, DELIVER, filters={'courier_id': courier_id})
    if not updated:
        order = get_order(order_id)
        _check_courier_scope(order, courier_id, DELIVER)
        raise classify_failure(order, DELIVER)

    order = get_order(order_id)
    credit(order.courier_id, order, order.courier_payout)
    record_transition(order, OrderStatus.PICKED_UP, ActorType.COURIER, courier_id)

    logger.info(
        f"[LIFECYCLE] {order.order_number} delivered by courier {courier_id}, "
        f"credited {order.courier_payout}"
    )
    return order


@transaction.atomic
def cancel(order_id, actor_type: str = ActorType.OPERATOR, actor_id=None, reason: str = "") -> Order:
    """
    Cancel an order from any non-terminal status.

    Cancelling an already cancelled order is a silent success. Delivered
    orders cannot be cancelled.
    """
    if actor_type not in CANCEL.actors:
        raise InvalidTransition(f"{actor_type} cannot cancel orders", transition=CANCEL.name)

    order = Order.objects.select_for_update().filter(pk=order_id).first()
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found")

    if order.status == OrderStatus.CANCELLED:
        logger.debug(f"[LIFECYCLE] {order.order_number} already cancelled, nothing to do")
        return order
    if order.status == OrderStatus.DELIVERED:
        raise InvalidTransition(
            f"Order {order.order_number} is delivered and cannot be cancelled",
            order_id=str(order.id),
            current_status=order.status,
            transition=CANCEL.name,
        )

    from_status = order.status
    updated = conditional_update(
        order_id,
        CANCEL,
        sources=[from_status],
        cancel_reason=reason[:255],
    )
    if not updated:
        order = get_order(order_id)
        if order.status == OrderStatus.CANCELLED:
            logger.info(f"[LIFECYCLE] {order.order_number} cancelled concurrently, nothing to do")
            return order
        if order.status == OrderStatus.DELIVERED:
            raise InvalidTransition(
                f"Order {order.order_number} is delivered and cannot be cancelled",
                order_id=str(order.id),
                current_status=order.status,
                transition=CANCEL.name,
            )
        raise StaleState(
            f"Order {order.order_number} moved to {order.status} while cancelling",
            order_id=str(order.id),
            current_status=order.status,
            transition=CANCEL.name,
        )

    order = get_order(order_id)
    record_transition(order, from_status, actor_type, actor_id, note=reason)
    logger.info(f"[LIFECYCLE] {order.order_number} cancelled from {from_status} by {actor_type}")
    return order


@transaction.atomic
def expire(order_id, threshold_minutes: int = None) -> Order:
    """
    Auto-cancel a published order nobody claimed in time.

    Guarded on both status and publication age, so a claim that commits first
    makes this raise StaleState and leaves the order untouched.
    """
    if threshold_minutes is None:
        threshold_minutes = settings.ORDER_EXPIRY_MINUTES
    cutoff = timezone.now() - timedelta(minutes=threshold_minutes)

    updated = conditional_update(
        order_id,
        EXPIRE,
        filters={'published_at__lt': cutoff},
        cancel_reason='expired',
    )
    if not updated:
        order = get_order(order_id)
        if order.status == OrderStatus.PUBLISHED:
            raise StaleState(
                f"Order {order.order_number} was published less than {threshold_minutes} min ago",
                order_id=str(order.id),
                current_status=order.status,
                transition=EXPIRE.name,
            )
        raise classify_failure(order, EXPIRE)

    order = get_order(order_id)
    record_transition(
        order,
        OrderStatus.PUBLISHED,
        ActorType.SYSTEM,
        'sweeper',
        note=f"expired after {threshold_minutes} min unclaimed",
    )
    logger.info(f"[LIFECYCLE] {order.order_number} expired after {threshold_minutes} min")
    return order
