"""
Finance App URLs
"""

from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import CourierLedgerViewSet, PayoutRequestViewSet, WalletViewSet

router = DefaultRouter()
router.register(r'payout-requests', PayoutRequestViewSet, basename='payout-request')

urlpatterns = [
    # Courier ledger (operators)
    path('couriers/<uuid:courier_id>/ledger/', CourierLedgerViewSet.as_view({'get': 'ledger'}), name='courier-ledger'),
    path('couriers/<uuid:courier_id>/reconcile/', CourierLedgerViewSet.as_view({'post': 'reconcile'}), name='courier-reconcile'),
    path('couriers/<uuid:courier_id>/adjust/', CourierLedgerViewSet.as_view({'post': 'adjust'}), name='courier-adjust'),

    # Wallet (courier self-service)
    path('wallet/balance/', WalletViewSet.as_view({'get': 'balance'}), name='wallet-balance'),
    path('wallet/history/', WalletViewSet.as_view({'get': 'history'}), name='wallet-history'),

    # Router URLs
    path('', include(router.urls)),
]
