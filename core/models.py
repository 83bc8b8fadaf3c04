"""
CORE App - Courier Registry for CITYDROP

Handles: Couriers (identity, availability, earnings counters)

Operators are regular Django staff users; couriers are their own model and
may optionally be linked to an auth user for API access.
"""

import uuid
from decimal import Decimal
from django.conf import settings
from django.core.validators import RegexValidator
from django.db import models


class VehicleClass(models.TextChoices):
    """Vehicle classes, each with its own tariff."""
    MOTORCYCLE = 'motorcycle', 'Motorcycle'
    CAR = 'car', 'Car'
    VAN = 'van', 'Van'
    TRUCK = 'truck', 'Truck'


class Courier(models.Model):
    """
    Courier registered with the platform.

    Key Business Logic:
    - balance is owed-but-unpaid earnings and can never go below zero
    - balance, total_deliveries and total_earned are only touched by the
      ledger (finance.services), never by ad-hoc updates
    - blocked or inactive couriers cannot claim orders
    """

    phone_regex = RegexValidator(
        regex=r'^\+?[0-9]{9,15}$',
        message="Format: +972XXXXXXXXX or local digits"
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='courier_profile',
        verbose_name="API user"
    )

    # Profile
    full_name = models.CharField(max_length=150, verbose_name="Full name")
    phone = models.CharField(
        max_length=20,
        unique=True,
        validators=[phone_regex],
        verbose_name="WhatsApp phone"
    )
    vehicle_class = models.CharField(
        max_length=20,
        choices=VehicleClass.choices,
        default=VehicleClass.MOTORCYCLE,
        verbose_name="Vehicle"
    )

    # Availability
    is_active = models.BooleanField(default=True, verbose_name="Active")
    is_blocked = models.BooleanField(default=False, verbose_name="Blocked")
    blocked_reason = models.CharField(max_length=255, blank=True)

    # Earnings (ledger-maintained)
    balance = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        verbose_name="Unpaid balance"
    )
    total_deliveries = models.PositiveIntegerField(default=0)
    total_earned = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        verbose_name="Lifetime earnings"
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Courier"
        verbose_name_plural = "Couriers"
        ordering = ['full_name']
        constraints = [
            models.CheckConstraint(
                condition=models.Q(balance__gte=0),
                name='courier_balance_non_negative',
            ),
        ]

    def __str__(self):
        return f"{self.full_name} ({self.phone})"

    @property
    def can_claim(self) -> bool:
        return self.is_active and not self.is_blocked
