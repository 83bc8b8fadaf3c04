"""
CITYDROP Main URL Configuration
"""

from django.contrib import admin
from django.urls import path, include
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from core.health import health_check, readiness_check


# ===========================================
# ADMIN SITE CUSTOMIZATION
# ===========================================
admin.site.site_header = "CITYDROP Dispatch"
admin.site.site_title = "CITYDROP Admin"
admin.site.index_title = "Operations"


@api_view(['GET'])
@permission_classes([AllowAny])
def api_root(request):
    """API Root endpoint with available routes."""
    return Response({
        'name': 'CITYDROP API',
        'version': '1.0.0',
        'endpoints': {
            'auth': {
                'token': '/api/auth/token/',
                'refresh': '/api/auth/token/refresh/',
            },
            'couriers': '/api/couriers/',
            'orders': '/api/orders/',
            'claim_next': '/api/orders/claim-next/',
            'order_stats': '/api/orders/stats/',
            'payout_requests': '/api/payout-requests/',
            'wallet': {
                'balance': '/api/wallet/balance/',
                'history': '/api/wallet/history/',
            },
            'public': {
                'quote': '/api/public/quote/',
                'orders': '/api/public/orders/',
                'tracking': '/api/public/orders/{order_number}/',
            },
        }
    })


urlpatterns = [
    # Health probes
    path('health/', health_check, name='health'),
    path('health/ready/', readiness_check, name='health-ready'),

    # Admin
    path('admin/', admin.site.urls),

    # API Root
    path('api/', api_root, name='api-root'),

    # App URLs
    path('api/', include('core.urls')),
    path('api/', include('logistics.urls')),
    path('api/', include('finance.urls')),
]
