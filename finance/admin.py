"""
Django Admin configuration for FINANCE app.
"""

from django.contrib import admin
from .models import LedgerEntry, PayoutRequest


@admin.register(LedgerEntry)
class LedgerEntryAdmin(admin.ModelAdmin):
    """Read-only ledger: entries are written by finance.services only."""

    list_display = (
        'created_at',
        'courier',
        'kind',
        'amount',
        'balance_after',
        'order',
        'reference',
    )
    list_filter = ('kind', 'created_at')
    search_fields = (
        'courier__phone',
        'courier__full_name',
        'order__order_number',
        'reference',
    )
    ordering = ('-created_at',)
    date_hierarchy = 'created_at'

    readonly_fields = (
        'id', 'courier', 'order', 'payout_request', 'kind', 'amount',
        'balance_after', 'reference', 'note', 'created_by', 'created_at',
    )

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(PayoutRequest)
class PayoutRequestAdmin(admin.ModelAdmin):
    """Payout requests; processing goes through the API so the debit stays guarded."""

    list_display = (
        'created_at',
        'courier',
        'amount',
        'payment_method',
        'status',
        'processed_by',
        'completed_at',
    )
    list_filter = ('status', 'payment_method')
    search_fields = ('courier__phone', 'courier__full_name')
    ordering = ('-created_at',)

    readonly_fields = (
        'id', 'courier', 'amount', 'payment_method', 'account_info', 'status',
        'processed_by', 'processed_at', 'completed_at', 'created_at',
    )
