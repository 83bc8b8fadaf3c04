"""
Django Admin configuration for LOGISTICS app.

Status and pricing are read-only here: status moves only through the
lifecycle services, pricing is frozen at creation.
"""

from django.contrib import admin
from .models import Order, OrderStatusHistory, OrderNumberSequence


class OrderStatusHistoryInline(admin.TabularInline):
    model = OrderStatusHistory
    extra = 0
    can_delete = False
    fields = ('created_at', 'from_status', 'status', 'actor_type', 'actor_id', 'note')
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """Admin for Order with full details."""

    list_display = (
        'order_number',
        'status',
        'priority',
        'sender_phone',
        'receiver_phone',
        'courier',
        'total_price',
        'created_at'
    )
    list_filter = ('status', 'priority', 'vehicle_class', 'created_at')
    search_fields = (
        'order_number',
        'sender_phone',
        'receiver_phone',
        'courier__phone',
    )
    ordering = ('-created_at',)
    date_hierarchy = 'created_at'
    inlines = [OrderStatusHistoryInline]

    readonly_fields = (
        'id',
        'order_number',
        'status',
        'courier',
        'vehicle_class',
        'is_night_window',
        'distance_km',
        'base_price',
        'per_km_rate',
        'billable_km',
        'price_before_vat',
        'vat',
        'total_price',
        'commission',
        'courier_payout',
        'price_overridden',
        'created_by',
        'created_at',
        'published_at',
        'assigned_at',
        'picked_up_at',
        'delivered_at',
        'cancelled_at',
        'cancel_reason',
    )

    fieldsets = (
        ('Identification', {
            'fields': ('id', 'order_number', 'status', 'priority', 'created_by')
        }),
        ('Parties', {
            'fields': (
                'sender_name', 'sender_phone', 'pickup_address', 'pickup_notes',
                'receiver_name', 'receiver_phone', 'delivery_address', 'delivery_notes',
                'courier',
            )
        }),
        ('Package', {
            'fields': ('package_description', 'notes')
        }),
        ('Pricing', {
            'fields': (
                'vehicle_class', 'is_night_window', 'distance_km',
                'base_price', 'per_km_rate', 'billable_km',
                'price_before_vat', 'vat', 'total_price',
                'commission', 'courier_payout', 'price_overridden',
            )
        }),
        ('Timeline', {
            'fields': (
                'created_at', 'published_at', 'assigned_at', 'picked_up_at',
                'delivered_at', 'cancelled_at', 'cancel_reason',
            )
        }),
    )

    def has_add_permission(self, request):
        # Orders are created through the API so they get priced and numbered
        return False

    def has_delete_permission(self, request, obj=None):
        if obj is not None and not obj.is_terminal:
            return False
        return super().has_delete_permission(request, obj)


@admin.register(OrderNumberSequence)
class OrderNumberSequenceAdmin(admin.ModelAdmin):
    list_display = ('prefix', 'last_value')
    readonly_fields = ('prefix', 'last_value')
