"""
Distance Estimator for CITYDROP

Thin client over the Google Distance Matrix API. The result is only used
once, to price an order at creation; it is never re-queried afterwards.
"""

import logging
from decimal import Decimal

import requests
from django.conf import settings

from core.exceptions import DistanceUnavailable

logger = logging.getLogger(__name__)


class DistanceEstimator:
    """Driving distance between two free-text addresses."""

    def __init__(self, api_key: str = None, base_url: str = None, timeout: int = None):
        self.api_key = api_key if api_key is not None else settings.GOOGLE_MAPS_API_KEY
        self.base_url = base_url or settings.GOOGLE_DISTANCE_MATRIX_URL
        self.timeout = timeout or settings.DISTANCE_REQUEST_TIMEOUT

    def estimate_km(self, origin: str, destination: str) -> Decimal:
        """
        Get driving distance in kilometers.

        Raises:
            DistanceUnavailable: on network errors or a non-OK answer
        """
        if not self.api_key:
            raise DistanceUnavailable("GOOGLE_MAPS_API_KEY is not configured")

        try:
            response = requests.get(
                self.base_url,
                params={
                    'origins': origin,
                    'destinations': destination,
                    'key': self.api_key,
                    'units': 'metric',
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"[DISTANCE] Distance Matrix request failed: {e}")
            raise DistanceUnavailable(f"Distance lookup failed: {e}")

        try:
            element = data['rows'][0]['elements'][0]
        except (KeyError, IndexError, TypeError):
            logger.warning(f"[DISTANCE] Unexpected Distance Matrix response: {data}")
            raise DistanceUnavailable("Unexpected distance service response")

        if data.get('status') != 'OK' or element.get('status') != 'OK':
            logger.warning(
                f"[DISTANCE] No route {origin!r} -> {destination!r}: "
                f"{data.get('status')}/{element.get('status')}"
            )
            raise DistanceUnavailable("No route between the given addresses")

        # Distance Matrix returns meters
        meters = Decimal(str(element['distance']['value']))
        return (meters / 1000).quantize(Decimal('0.01'))
