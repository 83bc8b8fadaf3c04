"""
Finance App Serializers - Ledger & Payout Requests
"""

from decimal import Decimal

from rest_framework import serializers
from .models import LedgerEntry, PayoutRequest, PaymentMethod


class LedgerEntrySerializer(serializers.ModelSerializer):
    """Serializer for LedgerEntry model."""

    order_number = serializers.CharField(source='order.order_number', read_only=True, default=None)

    class Meta:
        model = LedgerEntry
        fields = [
            'id', 'courier', 'kind', 'amount', 'balance_after',
            'order', 'order_number', 'payout_request',
            'reference', 'note', 'created_at'
        ]
        read_only_fields = fields


class AdjustmentSerializer(serializers.Serializer):
    """Manual balance correction (operators only)."""

    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    note = serializers.CharField(max_length=255)

    def validate_amount(self, value):
        if value == 0:
            raise serializers.ValidationError("Amount cannot be zero.")
        return value


class PayoutRequestSerializer(serializers.ModelSerializer):
    """Serializer for PayoutRequest model."""

    courier_name = serializers.CharField(source='courier.full_name', read_only=True)
    courier_phone = serializers.CharField(source='courier.phone', read_only=True)

    class Meta:
        model = PayoutRequest
        fields = [
            'id', 'courier', 'courier_name', 'courier_phone',
            'amount', 'payment_method', 'account_info', 'status',
            'processed_by', 'processed_at', 'admin_notes',
            'completed_at', 'created_at'
        ]
        read_only_fields = fields


class PayoutRequestCreateSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))
    payment_method = serializers.ChoiceField(choices=PaymentMethod.choices)
    account_info = serializers.JSONField(required=False, default=dict)


class PayoutDecisionSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class WalletSummarySerializer(serializers.Serializer):
    """Serializer for a courier's own wallet summary."""

    balance = serializers.DecimalField(max_digits=12, decimal_places=2)
    total_earned = serializers.DecimalField(max_digits=12, decimal_places=2)
    total_deliveries = serializers.IntegerField()
    pending_payouts = serializers.DecimalField(max_digits=12, decimal_places=2)
    min_payout_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
