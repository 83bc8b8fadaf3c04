"""
LOGISTICS App - Real-time Notifier

Fans order events out over the Django Channels layer. WhatsApp/SMS bots and
dashboards subscribe to these groups; message wording is their business.

Groups:
- order_<id>      clients/operators tracking one order
- couriers        the courier pool (new published orders, taken orders)
- courier_<id>    one courier (assignment, cancellation of their order)
"""

import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.dispatch import receiver

from logistics.events import OrderEvent, order_transitioned
from logistics.models import OrderStatus

logger = logging.getLogger(__name__)

COURIER_POOL_GROUP = 'couriers'


def _send_group_event(group_name: str, event: dict) -> bool:
    """Send event to a channel group."""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return False

    try:
        async_to_sync(channel_layer.group_send)(group_name, event)
        return True
    except Exception as e:
        logger.warning(f"[EVENTS] Failed to send to group {group_name}: {e}")
        return False


def groups_for_event(event: OrderEvent) -> list:
    """Which groups hear about a transition."""
    groups = [f'order_{event.order_id}']
    courier_id = event.payload.get('courier_id')

    if event.to_status == OrderStatus.PUBLISHED:
        groups.append(COURIER_POOL_GROUP)
    elif event.to_status == OrderStatus.ASSIGNED:
        # Winner hears it directly, the pool learns the order is gone
        groups.append(COURIER_POOL_GROUP)
        if courier_id:
            groups.append(f'courier_{courier_id}')
    elif event.to_status == OrderStatus.CANCELLED:
        if event.from_status == OrderStatus.PUBLISHED:
            groups.append(COURIER_POOL_GROUP)
        if courier_id:
            groups.append(f'courier_{courier_id}')

    return groups


@receiver(order_transitioned, dispatch_uid='logistics.notifier.broadcast_order_event')
def broadcast_order_event(sender, event: OrderEvent, **kwargs):
    message = {'type': 'order_status_update', **event.as_dict()}

    delivered = 0
    for group in groups_for_event(event):
        if _send_group_event(group, message):
            delivered += 1

    logger.debug(
        f"[EVENTS] {event.order_number} {event.from_status} -> {event.to_status} "
        f"broadcast to {delivered} group(s)"
    )
    return delivered
