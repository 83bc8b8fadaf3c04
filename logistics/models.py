"""
LOGISTICS App - Orders & Status History for CITYDROP

Handles: Orders, Status history, Order number sequence

Status is only ever changed by logistics.services.lifecycle and
logistics.services.claims, through conditional updates.
"""

import uuid
from decimal import Decimal
from django.conf import settings
from django.db import models

from core.models import VehicleClass
from core.exceptions import IntegrityViolation, InvalidTransition


class OrderStatus(models.TextChoices):
    """Order status enumeration."""
    NEW = 'new', 'New'
    PUBLISHED = 'published', 'Published'
    ASSIGNED = 'assigned', 'Assigned'
    PICKED_UP = 'picked_up', 'Picked up'
    DELIVERED = 'delivered', 'Delivered'
    CANCELLED = 'cancelled', 'Cancelled'


TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

# Timestamp column stamped when an order enters each status
STATUS_TIMESTAMP_FIELDS = {
    OrderStatus.NEW: 'created_at',
    OrderStatus.PUBLISHED: 'published_at',
    OrderStatus.ASSIGNED: 'assigned_at',
    OrderStatus.PICKED_UP: 'picked_up_at',
    OrderStatus.DELIVERED: 'delivered_at',
    OrderStatus.CANCELLED: 'cancelled_at',
}


class ActorType(models.TextChoices):
    """Who performed a transition."""
    OPERATOR = 'operator', 'Operator'
    COURIER = 'courier', 'Courier'
    SYSTEM = 'system', 'System'


class OrderPriority(models.TextChoices):
    NORMAL = 'normal', 'Normal'
    URGENT = 'urgent', 'Urgent'


class OrderNumberSequence(models.Model):
    """
    Store-side counter for human-facing order numbers.

    One row per prefix. It is incremented with a conditional UPDATE inside
    the same transaction as the order insert, so the row lock serialises
    concurrent creators across service instances. A rolled-back creation
    rolls the counter back too.
    """

    prefix = models.CharField(max_length=10, primary_key=True)
    last_value = models.PositiveBigIntegerField(default=0)

    class Meta:
        verbose_name = "Order number sequence"

    def __str__(self):
        return f"{self.prefix}: {self.last_value}"


class Order(models.Model):
    """
    Core delivery order.

    Pricing is frozen at creation: total_price == commission + courier_payout
    is enforced by a check constraint and never recomputed afterwards.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_number = models.CharField(
        max_length=32,
        unique=True,
        editable=False,
        verbose_name="Order number"
    )

    # Status
    status = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.NEW,
        verbose_name="Status"
    )
    priority = models.CharField(
        max_length=10,
        choices=OrderPriority.choices,
        default=OrderPriority.NORMAL
    )

    # Parties
    sender_name = models.CharField(max_length=150)
    sender_phone = models.CharField(max_length=20)
    pickup_address = models.CharField(max_length=255)
    pickup_notes = models.TextField(blank=True)
    receiver_name = models.CharField(max_length=150)
    receiver_phone = models.CharField(max_length=20)
    delivery_address = models.CharField(max_length=255)
    delivery_notes = models.TextField(blank=True)
    package_description = models.TextField(blank=True)
    notes = models.TextField(blank=True)

    courier = models.ForeignKey(
        'core.Courier',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='orders',
        verbose_name="Courier"
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='created_orders',
        verbose_name="Created by (operator)"
    )

    # Pricing (frozen at creation)
    vehicle_class = models.CharField(
        max_length=20,
        choices=VehicleClass.choices,
        default=VehicleClass.MOTORCYCLE
    )
    is_night_window = models.BooleanField(default=False)
    distance_km = models.DecimalField(max_digits=8, decimal_places=2, default=Decimal('0.00'))
    base_price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    per_km_rate = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    billable_km = models.DecimalField(max_digits=8, decimal_places=2, default=Decimal('0.00'))
    price_before_vat = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    vat = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    total_price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    commission = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    courier_payout = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    price_overridden = models.BooleanField(default=False)

    # Timestamps (each set once, when the status is entered)
    created_at = models.DateTimeField(auto_now_add=True)
    published_at = models.DateTimeField(null=True, blank=True)
    assigned_at = models.DateTimeField(null=True, blank=True)
    picked_up_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancel_reason = models.CharField(max_length=255, blank=True)

    class Meta:
        verbose_name = "Order"
        verbose_name_plural = "Orders"
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'published_at']),
            models.Index(fields=['courier', 'status']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(total_price=models.F('commission') + models.F('courier_payout')),
                name='order_total_equals_commission_plus_payout',
            ),
            models.CheckConstraint(
                condition=models.Q(courier_payout__gte=0),
                name='order_payout_non_negative',
            ),
        ]

    def __str__(self):
        return f"Order {self.order_number} - {self.status}"

    def delete(self, *args, **kwargs):
        if self.status not in TERMINAL_STATUSES:
            raise InvalidTransition(
                f"Order {self.order_number} is {self.status}; only terminal orders can be removed"
            )
        return super().delete(*args, **kwargs)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def status_timestamp(self):
        """Timestamp at which the order entered its current status."""
        return getattr(self, STATUS_TIMESTAMP_FIELDS[self.status])


class OrderStatusHistory(models.Model):
    """
    Append-only audit trail: one row per successful transition.
    """

    id = models.BigAutoField(primary_key=True)
    order = models.ForeignKey(
        Order,
        on_delete=models.PROTECT,
        related_name='history',
    )
    from_status = models.CharField(max_length=20, choices=OrderStatus.choices, blank=True)
    status = models.CharField(max_length=20, choices=OrderStatus.choices)
    actor_type = models.CharField(max_length=20, choices=ActorType.choices)
    actor_id = models.CharField(max_length=64, blank=True)
    note = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Status history entry"
        verbose_name_plural = "Status history"
        ordering = ['created_at', 'id']
        indexes = [
            models.Index(fields=['order', 'status']),
        ]

    def __str__(self):
        return f"{self.order_id} {self.from_status or '-'} -> {self.status} ({self.actor_type})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise IntegrityViolation("Status history entries are immutable")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise IntegrityViolation("Status history entries cannot be deleted")
