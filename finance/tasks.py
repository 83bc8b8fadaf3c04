"""
FINANCE App - Celery Tasks for Ledger Integrity

Nightly reconciliation of every courier balance against the ledger.
"""

import logging
from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(name='finance.tasks.reconcile_courier_balances')
def reconcile_courier_balances():
    """
    Reconcile all couriers and report mismatches.

    Mismatches are only reported (each one is already logged as an alert by
    reconcile()); balances are never corrected here.
    """
    from core.exceptions import IntegrityViolation
    from core.models import Courier
    from finance.services import reconcile

    logger.info("[CELERY] Reconciling courier balances")

    checked = 0
    mismatches = []

    for courier_id in Courier.objects.values_list('id', flat=True):
        checked += 1
        try:
            reconcile(courier_id)
        except IntegrityViolation as e:
            mismatches.append(e.context['report'].as_dict())

    if mismatches:
        logger.error(f"[CELERY] Reconciliation found {len(mismatches)} mismatch(es) in {checked} couriers")
    else:
        logger.info(f"[CELERY] Reconciliation clean: {checked} couriers")

    return {
        'checked': checked,
        'mismatches': mismatches,
    }
