"""
Expiry Sweeper for CITYDROP

Batch auto-cancel of published orders nobody claimed. Safe to run
concurrently with itself and with claims: each order goes through the same
guarded expire() as a single call would.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta

from django.conf import settings
from django.utils import timezone

from core.exceptions import StaleState
from logistics.models import Order, OrderStatus
from logistics.services import lifecycle

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    expired: list = field(default_factory=list)
    skipped: list = field(default_factory=list)

    @property
    def expired_count(self) -> int:
        return len(self.expired)


def expire_published_older_than(threshold_minutes: int = None) -> SweepReport:
    """Cancel every order published more than `threshold_minutes` ago."""
    if threshold_minutes is None:
        threshold_minutes = settings.ORDER_EXPIRY_MINUTES
    cutoff = timezone.now() - timedelta(minutes=threshold_minutes)

    stale_ids = list(
        Order.objects.filter(status=OrderStatus.PUBLISHED, published_at__lt=cutoff)
        .order_by('published_at')
        .values_list('id', flat=True)
    )

    report = SweepReport()
    for order_id in stale_ids:
        try:
            order = lifecycle.expire(order_id, threshold_minutes)
        except StaleState as e:
            # Claimed or cancelled between the scan and the update
            logger.debug(f"[SWEEPER] Skipped {order_id}: {e.message}")
            report.skipped.append(str(order_id))
            continue
        report.expired.append(order.order_number)

    if report.expired or report.skipped:
        logger.info(
            f"[SWEEPER] Expired {len(report.expired)} order(s), "
            f"skipped {len(report.skipped)} (threshold {threshold_minutes} min)"
        )
    return report
