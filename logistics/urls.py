"""
Logistics App URLs
"""

from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import (
    OrderViewSet,
    PublicOrderTrackingView, PublicOrderCreateAPIView, PublicQuoteAPIView,
)

router = DefaultRouter()
router.register(r'orders', OrderViewSet, basename='order')

urlpatterns = [
    # Public surface (no authentication)
    path('public/quote/', PublicQuoteAPIView.as_view(), name='public-quote'),
    path('public/orders/', PublicOrderCreateAPIView.as_view(), name='public-orders'),
    path('public/orders/<str:order_number>/', PublicOrderTrackingView.as_view(), name='public-order-tracking'),

    # Router URLs
    path('', include(router.urls)),
]
