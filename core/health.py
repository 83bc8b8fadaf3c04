"""
CITYDROP Health Check Endpoints
================================

Provides:
1. /health/ - Basic liveness check (for load balancers/Docker)
2. /health/ready/ - Readiness check (database, channel layer, Celery workers)
"""

import time
import logging
from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import connection
from django.http import JsonResponse
from django.utils import timezone
from django.views.decorators.http import require_GET

logger = logging.getLogger(__name__)

SERVICE_NAME = 'citydrop'


def _elapsed_ms(start: float) -> float:
    return round((time.time() - start) * 1000, 2)


@require_GET
def health_check(request):
    """Liveness probe: 200 while the Django process is up."""
    return JsonResponse({
        'status': 'ok',
        'service': SERVICE_NAME,
        'timestamp': timezone.now().isoformat(),
    })


def check_database() -> dict:
    start = time.time()
    with connection.cursor() as cursor:
        cursor.execute("SELECT 1")
        cursor.fetchone()
    return {
        'status': 'healthy',
        'response_time_ms': _elapsed_ms(start),
        'vendor': connection.vendor,
        'skip_locked': connection.features.has_select_for_update_skip_locked,
    }


def check_channel_layer() -> dict:
    layer = get_channel_layer()
    if layer is None:
        return {'status': 'unhealthy', 'error': 'No channel layer configured'}

    start = time.time()
    async_to_sync(layer.group_send)('healthcheck', {'type': 'healthcheck.ping'})
    return {
        'status': 'healthy',
        'backend': type(layer).__name__,
        'response_time_ms': _elapsed_ms(start),
    }


def check_celery() -> dict:
    from citydrop_core.celery import app as celery_app

    start = time.time()
    ping_result = celery_app.control.inspect(timeout=3.0).ping()
    if not ping_result:
        return {
            'status': 'degraded',
            'error': 'No workers responding',
            'response_time_ms': _elapsed_ms(start),
        }
    return {
        'status': 'healthy',
        'workers': len(ping_result),
        'response_time_ms': _elapsed_ms(start),
    }


# Celery being down delays expiry and reconciliation but does not stop dispatch
CRITICAL_CHECKS = {'database', 'channel_layer'}


@require_GET
def readiness_check(request):
    """
    Readiness probe.

    503 when the database or the channel layer is down; a missing Celery
    worker only marks the service degraded.
    """
    probes = {
        'database': check_database,
        'channel_layer': check_channel_layer,
        'celery': check_celery,
    }

    checks = {}
    all_healthy = True
    for name, probe in probes.items():
        try:
            checks[name] = probe()
        except Exception as e:
            checks[name] = {'status': 'unhealthy', 'error': str(e)}
            logger.error(f"[HEALTH] {name} unhealthy: {e}")

        if name in CRITICAL_CHECKS and checks[name]['status'] != 'healthy':
            all_healthy = False
        elif checks[name]['status'] != 'healthy':
            logger.warning(f"[HEALTH] {name} {checks[name]['status']}")

    return JsonResponse({
        'status': 'healthy' if all_healthy else 'unhealthy',
        'service': SERVICE_NAME,
        'timestamp': timezone.now().isoformat(),
        'checks': checks,
    }, status=200 if all_healthy else 503)
