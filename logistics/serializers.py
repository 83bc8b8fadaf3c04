"""
Logistics App Serializers - Orders & Status History
"""

import re
from decimal import Decimal

from rest_framework import serializers

from core.models import VehicleClass
from .models import Order, OrderPriority, OrderStatusHistory


def clean_phone(value: str) -> str:
    clean = re.sub(r'[\s\-]', '', value)
    if not re.fullmatch(r'\+?[0-9]{9,15}', clean):
        raise serializers.ValidationError("Invalid phone number format.")
    return clean


class OrderSerializer(serializers.ModelSerializer):
    """Full serializer for Order (operators and couriers)."""

    courier_name = serializers.CharField(source='courier.full_name', read_only=True, default=None)
    courier_phone = serializers.CharField(source='courier.phone', read_only=True, default=None)

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'status', 'priority',
            'sender_name', 'sender_phone', 'pickup_address', 'pickup_notes',
            'receiver_name', 'receiver_phone', 'delivery_address', 'delivery_notes',
            'package_description', 'notes',
            'courier', 'courier_name', 'courier_phone',
            'vehicle_class', 'is_night_window', 'distance_km',
            'base_price', 'per_km_rate', 'billable_km', 'price_before_vat', 'vat',
            'total_price', 'commission', 'courier_payout', 'price_overridden',
            'created_at', 'published_at', 'assigned_at', 'picked_up_at',
            'delivered_at', 'cancelled_at', 'cancel_reason',
        ]
        read_only_fields = fields


class PublicOrderSerializer(serializers.ModelSerializer):
    """Reduced projection for public tracking: no price breakdown."""

    class Meta:
        model = Order
        fields = [
            'order_number', 'status', 'priority',
            'pickup_address', 'delivery_address', 'vehicle_class',
            'distance_km', 'total_price',
            'created_at', 'published_at', 'assigned_at', 'picked_up_at',
            'delivered_at', 'cancelled_at',
        ]
        read_only_fields = fields


class OrderStatusHistorySerializer(serializers.ModelSerializer):

    class Meta:
        model = OrderStatusHistory
        fields = ['from_status', 'status', 'actor_type', 'actor_id', 'note', 'created_at']
        read_only_fields = fields


class BaseOrderCreateSerializer(serializers.Serializer):
    sender_name = serializers.CharField(max_length=150)
    sender_phone = serializers.CharField(max_length=20)
    pickup_address = serializers.CharField(max_length=255)
    pickup_notes = serializers.CharField(required=False, allow_blank=True, default='')
    receiver_name = serializers.CharField(max_length=150)
    receiver_phone = serializers.CharField(max_length=20)
    delivery_address = serializers.CharField(max_length=255)
    delivery_notes = serializers.CharField(required=False, allow_blank=True, default='')
    package_description = serializers.CharField(required=False, allow_blank=True, default='')
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    vehicle_class = serializers.ChoiceField(
        choices=VehicleClass.choices,
        default=VehicleClass.MOTORCYCLE
    )

    def validate_sender_phone(self, value):
        return clean_phone(value)

    def validate_receiver_phone(self, value):
        return clean_phone(value)


class OrderCreateSerializer(BaseOrderCreateSerializer):
    """
    Operator order creation.

    distance_km skips the distance lookup; override_price replaces the
    computed total.
    """

    priority = serializers.ChoiceField(choices=OrderPriority.choices, default=OrderPriority.NORMAL)
    distance_km = serializers.DecimalField(
        max_digits=8, decimal_places=2, required=False, min_value=Decimal('0')
    )
    override_price = serializers.DecimalField(
        max_digits=10, decimal_places=2, required=False, min_value=Decimal('1'),
        help_text="Final total in whole units, VAT included"
    )
    is_night_window = serializers.BooleanField(required=False, allow_null=True, default=None)

    def validate_override_price(self, value):
        # Totals are whole units; a fractional override would be rounded up
        if value != value.to_integral_value():
            raise serializers.ValidationError("Override price must be a whole amount.")
        return value


class PublicOrderCreateSerializer(BaseOrderCreateSerializer):
    """Customer-facing order form. Orders land as `new` for an operator to publish."""


class QuoteRequestSerializer(serializers.Serializer):
    pickup_address = serializers.CharField(max_length=255, required=False)
    delivery_address = serializers.CharField(max_length=255, required=False)
    distance_km = serializers.DecimalField(
        max_digits=8, decimal_places=2, required=False, min_value=Decimal('0')
    )
    vehicle_class = serializers.ChoiceField(
        choices=VehicleClass.choices,
        default=VehicleClass.MOTORCYCLE
    )

    def validate(self, data):
        has_addresses = data.get('pickup_address') and data.get('delivery_address')
        if data.get('distance_km') is None and not has_addresses:
            raise serializers.ValidationError(
                "Provide pickup and delivery addresses or a distance."
            )
        return data


class QuoteResponseSerializer(serializers.Serializer):
    vehicle_class = serializers.CharField()
    distance_km = serializers.DecimalField(max_digits=8, decimal_places=2)
    is_night_window = serializers.BooleanField()
    price_before_vat = serializers.DecimalField(max_digits=10, decimal_places=2)
    vat = serializers.DecimalField(max_digits=10, decimal_places=2)
    total = serializers.DecimalField(max_digits=10, decimal_places=2)


class CancelSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')


class ClaimNextSerializer(serializers.Serializer):
    vehicle_class = serializers.ChoiceField(
        choices=VehicleClass.choices,
        required=False
    )
