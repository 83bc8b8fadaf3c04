"""
FINANCE App - Courier Ledger & Payouts for CITYDROP

Handles: Ledger entries, Payout requests

The ledger is canonical. Courier.balance is a cache of SUM(LedgerEntry.amount)
kept in step by finance.services and checked by reconcile().
"""

import uuid
from django.conf import settings
from django.db import models

from core.exceptions import IntegrityViolation


class LedgerEntryKind(models.TextChoices):
    """Ledger entry kind."""
    # Credits (+)
    DELIVERY_CREDIT = 'delivery_credit', 'Delivery credit'
    # Debits (-)
    PAYOUT_DEBIT = 'payout_debit', 'Payout debit'
    # Either sign
    MANUAL_ADJUSTMENT = 'manual_adjustment', 'Manual adjustment'


class LedgerEntry(models.Model):
    """
    One immutable money movement on a courier's balance.

    Amount is signed: positive credits, negative debits.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    courier = models.ForeignKey(
        'core.Courier',
        on_delete=models.PROTECT,
        related_name='ledger_entries',
        verbose_name="Courier"
    )
    order = models.ForeignKey(
        'logistics.Order',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='ledger_entries',
        verbose_name="Order"
    )
    payout_request = models.ForeignKey(
        'finance.PayoutRequest',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='ledger_entries',
    )

    kind = models.CharField(
        max_length=20,
        choices=LedgerEntryKind.choices,
        verbose_name="Kind"
    )
    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        verbose_name="Amount"
    )
    balance_after = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        verbose_name="Balance after"
    )

    reference = models.CharField(max_length=100, blank=True)
    note = models.CharField(max_length=255, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='ledger_entries',
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Ledger entry"
        verbose_name_plural = "Ledger entries"
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['courier', 'created_at']),
            models.Index(fields=['kind']),
        ]
        constraints = [
            # A delivery pays out once, whatever retries happen upstream
            models.UniqueConstraint(
                fields=['order'],
                condition=models.Q(kind='delivery_credit'),
                name='ledger_one_delivery_credit_per_order',
            ),
        ]

    def __str__(self):
        sign = '+' if self.amount >= 0 else ''
        return f"{self.courier_id} | {sign}{self.amount} | {self.kind}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise IntegrityViolation("Ledger entries are immutable")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise IntegrityViolation("Ledger entries cannot be deleted")


class PayoutStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    APPROVED = 'approved', 'Approved'
    REJECTED = 'rejected', 'Rejected'
    COMPLETED = 'completed', 'Completed'


class PaymentMethod(models.TextChoices):
    BANK_TRANSFER = 'bank_transfer', 'Bank transfer'
    BIT = 'bit', 'Bit'
    PAYBOX = 'paybox', 'PayBox'
    CASH = 'cash', 'Cash'


class PayoutRequest(models.Model):
    """
    Courier request to be paid out part of their balance.

    pending -> approved -> completed (balance debited here)
    pending -> rejected
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    courier = models.ForeignKey(
        'core.Courier',
        on_delete=models.PROTECT,
        related_name='payout_requests',
        verbose_name="Courier"
    )
    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        verbose_name="Amount"
    )
    payment_method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        default=PaymentMethod.BANK_TRANSFER
    )
    account_info = models.JSONField(default=dict, blank=True)

    status = models.CharField(
        max_length=20,
        choices=PayoutStatus.choices,
        default=PayoutStatus.PENDING,
        verbose_name="Status"
    )

    # Operator handling
    processed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='processed_payouts',
        verbose_name="Processed by"
    )
    admin_notes = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = "Payout request"
        verbose_name_plural = "Payout requests"
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['courier', 'status']),
            models.Index(fields=['status', 'created_at']),
        ]

    def __str__(self):
        return f"Payout {self.amount} - {self.courier_id} - {self.status}"
