"""
LOGISTICS App - WebSocket Consumers for Real-time Order Updates

Subscribers to the groups the notifier broadcasts to:
- OrderTrackingConsumer: one order, by order number (public, reduced fields)
- CourierConsumer: the courier pool plus the courier's own group
"""

import logging
from typing import Any, Dict, Optional

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer

from logistics.notifier import COURIER_POOL_GROUP

logger = logging.getLogger(__name__)


class OrderTrackingConsumer(AsyncJsonWebsocketConsumer):
    """
    Track one order in real-time.

    Clients connect to: ws://host/ws/orders/<order_number>/

    Only the status and its timestamp are pushed; contact details and the
    price split stay server-side.
    """

    group_name = None

    async def connect(self):
        self.order_number = self.scope['url_route']['kwargs']['order_number']

        order = await self.get_order()
        if order is None:
            await self.close(code=4004)
            return

        self.group_name = f"order_{order['id']}"
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()

        await self.send_json({
            'type': 'connection_established',
            'order_number': self.order_number,
            'status': order['status'],
        })
        logger.info(f"[WS] Client tracking {self.order_number}")

    async def disconnect(self, close_code):
        if self.group_name:
            await self.channel_layer.group_discard(self.group_name, self.channel_name)

    async def receive_json(self, content):
        if content.get('type') == 'ping':
            await self.send_json({'type': 'pong'})

    # ============================================
    # Event Handlers (called via channel_layer.group_send)
    # ============================================

    async def order_status_update(self, event):
        await self.send_json({
            'type': 'status_update',
            'order_number': event['order_number'],
            'status': event['to_status'],
            'timestamp': event['timestamp'],
        })

    @database_sync_to_async
    def get_order(self) -> Optional[Dict[str, Any]]:
        from logistics.models import Order

        order = Order.objects.filter(order_number=self.order_number).values('id', 'status').first()
        if order is None:
            return None
        return {'id': str(order['id']), 'status': order['status']}


class CourierConsumer(AsyncJsonWebsocketConsumer):
    """
    Courier app feed.

    Clients connect to: ws://host/ws/courier/ with an authenticated session
    linked to a Courier. Claims and status changes go through the REST API;
    this socket only pushes order events.
    """

    courier_id = None

    async def connect(self):
        user = self.scope.get('user')
        if user is None or user.is_anonymous:
            await self.close(code=4001)
            return

        courier = await self.get_courier(user)
        if courier is None:
            await self.close(code=4003)
            return

        self.courier_id = courier['id']
        await self.channel_layer.group_add(COURIER_POOL_GROUP, self.channel_name)
        await self.channel_layer.group_add(f'courier_{self.courier_id}', self.channel_name)
        await self.accept()

        await self.send_json({
            'type': 'connection_established',
            'courier_id': self.courier_id,
            'can_claim': courier['can_claim'],
        })
        logger.info(f"[WS] Courier {self.courier_id} connected")

    async def disconnect(self, close_code):
        if self.courier_id:
            await self.channel_layer.group_discard(COURIER_POOL_GROUP, self.channel_name)
            await self.channel_layer.group_discard(f'courier_{self.courier_id}', self.channel_name)
            logger.info(f"[WS] Courier {self.courier_id} disconnected")

    async def receive_json(self, content):
        if content.get('type') == 'ping':
            await self.send_json({'type': 'pong'})

    async def order_status_update(self, event):
        payload = event.get('payload', {})
        await self.send_json({
            'type': 'order_update',
            'order_id': event['order_id'],
            'order_number': event['order_number'],
            'from_status': event['from_status'],
            'status': event['to_status'],
            'assigned_to_me': payload.get('courier_id') == self.courier_id,
            'pickup_address': payload.get('pickup_address'),
            'delivery_address': payload.get('delivery_address'),
            'courier_payout': payload.get('courier_payout'),
            'timestamp': event['timestamp'],
        })

    @database_sync_to_async
    def get_courier(self, user) -> Optional[Dict[str, Any]]:
        from core.models import Courier

        courier = Courier.objects.filter(user=user).first()
        if courier is None:
            return None
        return {'id': str(courier.pk), 'can_claim': courier.can_claim}
