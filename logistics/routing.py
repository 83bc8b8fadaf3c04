"""
LOGISTICS App - WebSocket Routing Configuration

Maps WebSocket URLs to consumers for real-time order updates.
"""

from django.urls import re_path
from . import consumers


websocket_urlpatterns = [
    # Track one order by its public number
    # ws://localhost:8000/ws/orders/CD-000042/
    re_path(
        r'ws/orders/(?P<order_number>[\w-]+)/$',
        consumers.OrderTrackingConsumer.as_asgi()
    ),

    # Courier app: published pool + own assignments
    # ws://localhost:8000/ws/courier/
    re_path(
        r'ws/courier/$',
        consumers.CourierConsumer.as_asgi()
    ),
]
