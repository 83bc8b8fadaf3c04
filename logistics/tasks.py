"""
LOGISTICS App - Celery Tasks

Periodic order maintenance, triggered by Celery beat.
"""

from celery import shared_task
import logging

logger = logging.getLogger(__name__)


@shared_task(name='logistics.tasks.expire_stale_orders')
def expire_stale_orders(threshold_minutes: int = None):
    """
    Auto-cancel published orders nobody claimed in time.

    Runs every minute. Overlapping runs are harmless: each order's expiry is
    guarded by its own conditional update.
    """
    from logistics.services.sweeper import expire_published_older_than

    report = expire_published_older_than(threshold_minutes)
    if report.expired:
        logger.info(f"[SWEEPER TASK] Expired: {', '.join(report.expired)}")
    return {
        'expired': report.expired_count,
        'skipped': len(report.skipped),
    }
