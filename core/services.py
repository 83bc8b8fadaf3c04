"""
CORE App - Courier Services for CITYDROP

Registration and blocking. Balance fields are never touched here.
"""

import logging
from django.core.exceptions import ValidationError
from django.db import transaction

from core.exceptions import CourierNotFound
from core.models import Courier

logger = logging.getLogger(__name__)


def get_courier(courier_id) -> Courier:
    try:
        return Courier.objects.get(pk=courier_id)
    except (Courier.DoesNotExist, ValueError, ValidationError):
        raise CourierNotFound(f"Courier {courier_id} not found")


def _lock_courier(courier_id) -> Courier:
    try:
        return Courier.objects.select_for_update().get(pk=courier_id)
    except (Courier.DoesNotExist, ValueError, ValidationError):
        raise CourierNotFound(f"Courier {courier_id} not found")


def register_courier(full_name: str, phone: str, vehicle_class: str = None, user=None) -> Courier:
    """Create an approved, active courier with an empty ledger."""
    courier = Courier(full_name=full_name, phone=phone, user=user)
    if vehicle_class:
        courier.vehicle_class = vehicle_class
    courier.full_clean(exclude=['user'])
    courier.save()

    logger.info(f"[COURIER] Registered {courier.phone} ({courier.vehicle_class})")
    return courier


@transaction.atomic
def block_courier(courier_id, reason: str = "") -> Courier:
    """
    Block a courier from claiming.

    Claims re-check the flag under the courier row lock, so a claim racing
    this call either commits before the block or is rejected.
    """
    courier = _lock_courier(courier_id)

    courier.is_blocked = True
    courier.blocked_reason = reason
    courier.save(update_fields=['is_blocked', 'blocked_reason'])

    logger.warning(f"[COURIER] {courier.phone} BLOCKED: {reason or 'no reason given'}")
    return courier


@transaction.atomic
def unblock_courier(courier_id) -> Courier:
    courier = _lock_courier(courier_id)

    courier.is_blocked = False
    courier.blocked_reason = ''
    courier.save(update_fields=['is_blocked', 'blocked_reason'])

    logger.info(f"[COURIER] {courier.phone} unblocked")
    return courier
