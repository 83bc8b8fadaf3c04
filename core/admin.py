"""
Django Admin configuration for CORE app.
"""

from django.contrib import admin
from .models import Courier


@admin.register(Courier)
class CourierAdmin(admin.ModelAdmin):
    """Courier admin. Money fields are read-only: they move through the ledger."""

    list_display = (
        'full_name',
        'phone',
        'vehicle_class',
        'balance',
        'total_deliveries',
        'total_earned',
        'is_blocked',
        'is_active',
        'created_at'
    )
    list_filter = ('vehicle_class', 'is_blocked', 'is_active')
    search_fields = ('phone', 'full_name')
    ordering = ('full_name',)

    fieldsets = (
        (None, {
            'fields': ('full_name', 'phone', 'vehicle_class', 'user')
        }),
        ('Availability', {
            'fields': ('is_active', 'is_blocked', 'blocked_reason')
        }),
        ('Earnings', {
            'fields': ('balance', 'total_deliveries', 'total_earned'),
            'description': 'Maintained by the courier ledger'
        }),
    )

    readonly_fields = ('balance', 'total_deliveries', 'total_earned', 'created_at')
