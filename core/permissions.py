"""
Core App Permissions - Operators & Couriers
"""

from rest_framework import permissions


class IsOperator(permissions.BasePermission):
    """Operators are staff users (dispatch desk, admins)."""

    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and request.user.is_staff)


class IsCourier(permissions.BasePermission):
    """Authenticated user linked to a Courier profile."""

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        return get_request_courier(request) is not None


def get_request_courier(request):
    """Return the Courier linked to the request user, or None."""
    from core.models import Courier

    if not request.user or not request.user.is_authenticated:
        return None
    return Courier.objects.filter(user=request.user).first()
