"""
Order statistics for the operator dashboard.
"""

from datetime import timedelta
from decimal import Decimal

from django.db.models import Avg, Count, Q, Sum
from django.utils import timezone

from logistics.models import Order, OrderStatus


def order_statistics(days: int = 30) -> dict:
    """Counts per status and delivered-order money over the last `days` days."""
    since = timezone.now() - timedelta(days=days)
    orders = Order.objects.filter(created_at__gte=since)
    delivered = Q(status=OrderStatus.DELIVERED)

    counts = {
        f'{status}_orders': Count('id', filter=Q(status=status))
        for status in OrderStatus.values
    }
    stats = orders.aggregate(
        total_orders=Count('id'),
        total_revenue=Sum('total_price', filter=delivered),
        total_commission=Sum('commission', filter=delivered),
        total_paid_to_couriers=Sum('courier_payout', filter=delivered),
        avg_distance=Avg('distance_km'),
        **counts,
    )

    for key in ('total_revenue', 'total_commission', 'total_paid_to_couriers'):
        stats[key] = stats[key] or Decimal('0.00')
    stats['avg_distance'] = Decimal(str(stats['avg_distance'] or 0)).quantize(Decimal('0.01'))
    stats['days'] = days
    return stats
