"""
Claim Coordinator for CITYDROP

Turns a published order into an assigned one for exactly one courier, no
matter how many claim at once.

Race safety:
- the courier row is locked and re-checked, so a block that commits first
  always wins over a claim
- candidate orders are read with SELECT ... FOR UPDATE SKIP LOCKED, so
  claimers never queue behind each other
- the write itself is a conditional UPDATE on status='published'; the first
  commit wins and everyone else gets ALREADY_TAKEN

Tie-break is a pure race: first commit wins, no priority between couriers.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from django.conf import settings
from django.db import transaction

from core.models import Courier
from core.services import get_courier
from logistics.models import ActorType, Order, OrderStatus
from logistics.services.lifecycle import (
    CLAIM,
    classify_failure,
    conditional_update,
    get_order,
    record_transition,
)

logger = logging.getLogger(__name__)


class ClaimOutcome(str, Enum):
    OK = 'ok'
    ALREADY_TAKEN = 'already_taken'
    COURIER_BLOCKED = 'courier_blocked'
    NONE_AVAILABLE = 'none_available'


@dataclass
class ClaimResult:
    """Outcome plus the order as it stands after the attempt."""

    outcome: ClaimOutcome
    order: Optional[Order] = None

    @property
    def ok(self) -> bool:
        return self.outcome == ClaimOutcome.OK


def _lock_courier(courier_id) -> Courier:
    return Courier.objects.select_for_update().get(pk=courier_id)


def _take(order_id, courier: Courier) -> ClaimResult:
    """Conditional write; must run inside the caller's transaction."""
    updated = conditional_update(order_id, CLAIM, courier=courier)
    if not updated:
        order = get_order(order_id)
        logger.info(
            f"[CLAIM] {order.order_number} already taken "
            f"(now {order.status}), courier {courier.phone} lost the race"
        )
        return ClaimResult(ClaimOutcome.ALREADY_TAKEN, order)

    order = get_order(order_id)
    record_transition(order, OrderStatus.PUBLISHED, ActorType.COURIER, courier.pk)
    logger.info(f"[CLAIM] {order.order_number} assigned to courier {courier.phone}")
    return ClaimResult(ClaimOutcome.OK, order)


def claim(order_id, courier_id) -> ClaimResult:
    """
    Claim a specific published order.

    Raises:
        OrderNotFound: unknown order
        CourierNotFound: unknown courier
        InvalidTransition: the order was never published
    """
    courier = get_courier(courier_id)
    order = get_order(order_id)

    if not courier.can_claim:
        logger.info(f"[CLAIM] Blocked courier {courier.phone} tried to claim {order.order_number}")
        return ClaimResult(ClaimOutcome.COURIER_BLOCKED, order)

    if order.status == OrderStatus.NEW:
        raise classify_failure(order, CLAIM)

    with transaction.atomic():
        courier = _lock_courier(courier.pk)
        if not courier.can_claim:
            logger.info(f"[CLAIM] Courier {courier.phone} was blocked while claiming {order.order_number}")
            return ClaimResult(ClaimOutcome.COURIER_BLOCKED, get_order(order_id))

        candidate = (
            Order.objects.select_for_update(skip_locked=True)
            .filter(pk=order_id, status=OrderStatus.PUBLISHED)
            .first()
        )
        if candidate is None:
            current = get_order(order_id)
            logger.info(
                f"[CLAIM] {current.order_number} unavailable ({current.status}), "
                f"courier {courier.phone} lost the race"
            )
            return ClaimResult(ClaimOutcome.ALREADY_TAKEN, current)

        return _take(order_id, courier)


def claim_next_available(courier_id, vehicle_class: str = None, max_attempts: int = None) -> ClaimResult:
    """
    "I'll take the next one": claim the oldest published order.

    A lost race moves on to the next candidate instead of retrying the same
    row, so two automated claimers never livelock on one order.
    """
    if max_attempts is None:
        max_attempts = settings.CLAIM_NEXT_MAX_ATTEMPTS

    courier = get_courier(courier_id)
    if not courier.can_claim:
        logger.info(f"[CLAIM] Blocked courier {courier.phone} asked for the next order")
        return ClaimResult(ClaimOutcome.COURIER_BLOCKED)

    tried = []
    for attempt in range(1, max_attempts + 1):
        with transaction.atomic():
            courier = _lock_courier(courier.pk)
            if not courier.can_claim:
                return ClaimResult(ClaimOutcome.COURIER_BLOCKED)

            candidates = (
                Order.objects.select_for_update(skip_locked=True)
                .filter(status=OrderStatus.PUBLISHED)
                .exclude(pk__in=tried)
            )
            if vehicle_class:
                candidates = candidates.filter(vehicle_class=vehicle_class)
            candidate = candidates.order_by('published_at', 'created_at').first()

            if candidate is None:
                logger.debug(f"[CLAIM] No published order left for courier {courier.phone}")
                return ClaimResult(ClaimOutcome.NONE_AVAILABLE)

            tried.append(candidate.pk)
            result = _take(candidate.pk, courier)

        if result.outcome != ClaimOutcome.ALREADY_TAKEN:
            return result
        logger.info(f"[CLAIM] Attempt {attempt}/{max_attempts} for courier {courier.phone} lost, moving on")

    logger.info(f"[CLAIM] Courier {courier.phone} gave up after {max_attempts} contested orders")
    return ClaimResult(ClaimOutcome.NONE_AVAILABLE)
