"""
Core App Serializers - Couriers
"""

from rest_framework import serializers

from .models import Courier, VehicleClass


class CourierSerializer(serializers.ModelSerializer):
    """Serializer for Courier (read operations)."""

    can_claim = serializers.ReadOnlyField()

    class Meta:
        model = Courier
        fields = [
            'id', 'full_name', 'phone', 'vehicle_class',
            'is_active', 'is_blocked', 'blocked_reason', 'can_claim',
            'balance', 'total_deliveries', 'total_earned', 'created_at'
        ]
        read_only_fields = fields


class CourierCreateSerializer(serializers.Serializer):
    """Serializer for courier registration."""

    full_name = serializers.CharField(max_length=150)
    phone = serializers.CharField(max_length=20)
    vehicle_class = serializers.ChoiceField(
        choices=VehicleClass.choices,
        default=VehicleClass.MOTORCYCLE
    )
    user_id = serializers.IntegerField(required=False)

    def validate_phone(self, value):
        import re
        clean = re.sub(r'[\s\-]', '', value)
        if Courier.objects.filter(phone=clean).exists():
            raise serializers.ValidationError("A courier with this phone already exists.")
        return clean


class CourierBlockSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True)
