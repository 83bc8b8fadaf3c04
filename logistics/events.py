"""
LOGISTICS App - Order Domain Events

One OrderEvent per successful transition, published only after the
transition's transaction commits. Receivers (notifier, bots, webhooks) are
plain Django signal receivers; their failures are logged and never reach
the code that moved the order.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from django.db import transaction
from django.dispatch import Signal

logger = logging.getLogger(__name__)


# Sent with kwarg `event` (OrderEvent)
order_transitioned = Signal()


@dataclass(frozen=True)
class OrderEvent:
    order_id: str
    order_number: str
    from_status: Optional[str]
    to_status: str
    actor_type: str
    actor_id: str
    timestamp: datetime
    payload: dict = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            'order_id': self.order_id,
            'order_number': self.order_number,
            'from_status': self.from_status,
            'to_status': self.to_status,
            'actor_type': self.actor_type,
            'actor_id': self.actor_id,
            'timestamp': self.timestamp.isoformat(),
            'payload': self.payload,
        }


def build_order_event(order, from_status, actor_type, actor_id, note: str = "") -> OrderEvent:
    """Snapshot an order right after a transition."""
    payload = {
        'courier_id': str(order.courier_id) if order.courier_id else None,
        'sender_phone': order.sender_phone,
        'receiver_phone': order.receiver_phone,
        'pickup_address': order.pickup_address,
        'delivery_address': order.delivery_address,
        'total_price': str(order.total_price),
        'courier_payout': str(order.courier_payout),
    }
    if note:
        payload['note'] = note

    return OrderEvent(
        order_id=str(order.id),
        order_number=order.order_number,
        from_status=from_status or None,
        to_status=order.status,
        actor_type=actor_type,
        actor_id=str(actor_id or ''),
        timestamp=order.status_timestamp,
        payload=payload,
    )


def _deliver(event: OrderEvent):
    responses = order_transitioned.send_robust(sender=OrderEvent, event=event)
    for receiver, result in responses:
        if isinstance(result, Exception):
            logger.warning(
                f"[EVENTS] Receiver {getattr(receiver, '__name__', receiver)} failed for "
                f"{event.order_number} {event.from_status} -> {event.to_status}: {result}"
            )


def emit_order_event(event: OrderEvent):
    """
    Publish an event once the current transaction commits.

    If the transaction rolls back the event is dropped with it.
    """
    transaction.on_commit(lambda: _deliver(event))
