"""
FINANCE App - Courier Ledger Services for CITYDROP

Every change to a courier's balance goes through this module:
- credit(): delivery payout, once per order
- debit(): guarded so the balance can never go below zero
- adjust(): signed manual correction by an operator
- reconcile(): compare the cached balance with the ledger, never fix it

Plus the payout request workflow (request -> approve/reject -> complete).
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import Count, F, Q, Sum
from django.utils import timezone

from core.exceptions import (
    CourierNotFound,
    InsufficientBalance,
    IntegrityViolation,
    InvalidTransition,
    PayoutBelowMinimum,
    PayoutNotFound,
)
from core.models import Courier
from finance.models import LedgerEntry, LedgerEntryKind, PayoutRequest, PayoutStatus

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')


def _amount(value) -> Decimal:
    return Decimal(str(value)).quantize(Decimal('0.01'))


def _current_balance(courier_id) -> Decimal:
    return Courier.objects.values_list('balance', flat=True).get(pk=courier_id)


# ============================================
# LEDGER OPERATIONS
# ============================================

@transaction.atomic
def credit(courier_id, order, amount) -> LedgerEntry:
    """
    Credit a courier for a delivered order.

    Runs inside the caller's transaction (deliver). A second credit for the
    same order hits the partial unique constraint and raises
    IntegrityViolation, rolling back everything the caller did.
    """
    amount = _amount(amount)
    if amount < 0:
        raise ValueError("Credit amount cannot be negative")

    updated = Courier.objects.filter(pk=courier_id).update(
        balance=F('balance') + amount,
        total_earned=F('total_earned') + amount,
        total_deliveries=F('total_deliveries') + 1,
    )
    if not updated:
        raise CourierNotFound(f"Courier {courier_id} not found")

    try:
        with transaction.atomic():
            entry = LedgerEntry.objects.create(
                courier_id=courier_id,
                order=order,
                kind=LedgerEntryKind.DELIVERY_CREDIT,
                amount=amount,
                balance_after=_current_balance(courier_id),
                reference=order.order_number,
                note=f"Delivery {order.order_number}",
            )
    except IntegrityError:
        logger.critical(
            f"[LEDGER] ALERT: second delivery credit attempted for order "
            f"{order.order_number} (courier {courier_id})"
        )
        raise IntegrityViolation(
            f"Order {order.order_number} was already credited",
            order_id=str(order.pk),
            courier_id=str(courier_id),
        )

    logger.info(
        f"[LEDGER] Courier {courier_id} +{amount} for {order.order_number} "
        f"(balance {entry.balance_after})"
    )
    return entry


@transaction.atomic
def debit(
    courier_id,
    amount,
    reference: str = "",
    kind: str = LedgerEntryKind.PAYOUT_DEBIT,
    payout_request=None,
    note: str = "",
    created_by=None,
) -> LedgerEntry:
    """
    Take money off a courier's balance.

    One conditional UPDATE ... WHERE balance >= amount, so two concurrent
    debits can never overdraw the balance between them.

    Raises:
        InsufficientBalance: balance is lower than amount
        CourierNotFound: unknown courier
    """
    amount = _amount(amount)
    if amount <= 0:
        raise ValueError("Debit amount must be positive")

    updated = Courier.objects.filter(pk=courier_id, balance__gte=amount).update(
        balance=F('balance') - amount
    )
    if not updated:
        if not Courier.objects.filter(pk=courier_id).exists():
            raise CourierNotFound(f"Courier {courier_id} not found")
        logger.info(f"[LEDGER] Debit of {amount} refused for courier {courier_id}: insufficient balance")
        raise InsufficientBalance(
            f"Balance is lower than {amount}",
            courier_id=str(courier_id),
            amount=str(amount),
        )

    entry = LedgerEntry.objects.create(
        courier_id=courier_id,
        kind=kind,
        amount=-amount,
        balance_after=_current_balance(courier_id),
        payout_request=payout_request,
        reference=reference,
        note=note,
        created_by=created_by,
    )

    logger.info(f"[LEDGER] Courier {courier_id} -{amount} ({kind}, ref {reference or '-'})")
    return entry


@transaction.atomic
def adjust(courier_id, amount, note: str, actor=None) -> LedgerEntry:
    """Operator correction. Negative adjustments use the same guard as debit()."""
    amount = _amount(amount)
    if amount == 0:
        raise ValueError("Adjustment amount cannot be zero")
    if not note:
        raise ValueError("Adjustments need a note")

    if amount < 0:
        return debit(
            courier_id,
            -amount,
            reference='adjustment',
            kind=LedgerEntryKind.MANUAL_ADJUSTMENT,
            note=note,
            created_by=actor,
        )

    updated = Courier.objects.filter(pk=courier_id).update(balance=F('balance') + amount)
    if not updated:
        raise CourierNotFound(f"Courier {courier_id} not found")

    entry = LedgerEntry.objects.create(
        courier_id=courier_id,
        kind=LedgerEntryKind.MANUAL_ADJUSTMENT,
        amount=amount,
        balance_after=_current_balance(courier_id),
        reference='adjustment',
        note=note,
        created_by=actor,
    )
    logger.warning(f"[LEDGER] Manual adjustment +{amount} for courier {courier_id}: {note}")
    return entry


@dataclass
class ReconciliationReport:
    courier_id: str
    balance: Decimal
    ledger_balance: Decimal
    total_earned: Decimal
    ledger_earned: Decimal
    total_deliveries: int
    ledger_deliveries: int

    @property
    def ok(self) -> bool:
        return (
            self.balance == self.ledger_balance
            and self.total_earned == self.ledger_earned
            and self.total_deliveries == self.ledger_deliveries
        )

    def as_dict(self) -> dict:
        return {
            'courier_id': self.courier_id,
            'balance': str(self.balance),
            'ledger_balance': str(self.ledger_balance),
            'total_earned': str(self.total_earned),
            'ledger_earned': str(self.ledger_earned),
            'total_deliveries': self.total_deliveries,
            'ledger_deliveries': self.ledger_deliveries,
            'ok': self.ok,
        }


def reconcile(courier_id) -> ReconciliationReport:
    """
    Recompute a courier's balance from the ledger and compare.

    A mismatch is logged as an integrity alert and raised; the cached
    columns are left as they are for an operator to investigate.
    """
    try:
        courier = Courier.objects.get(pk=courier_id)
    except (Courier.DoesNotExist, ValueError, ValidationError):
        raise CourierNotFound(f"Courier {courier_id} not found")

    is_credit = Q(kind=LedgerEntryKind.DELIVERY_CREDIT)
    sums = LedgerEntry.objects.filter(courier=courier).aggregate(
        balance=Sum('amount'),
        earned=Sum('amount', filter=is_credit),
        deliveries=Count('id', filter=is_credit),
    )

    report = ReconciliationReport(
        courier_id=str(courier.pk),
        balance=courier.balance,
        ledger_balance=_amount(sums['balance'] or ZERO),
        total_earned=courier.total_earned,
        ledger_earned=_amount(sums['earned'] or ZERO),
        total_deliveries=courier.total_deliveries,
        ledger_deliveries=sums['deliveries'],
    )

    if not report.ok:
        logger.critical(f"[LEDGER] ALERT: reconciliation mismatch for courier {courier.phone}: {report.as_dict()}")
        raise IntegrityViolation(
            f"Ledger mismatch for courier {courier.pk}",
            report=report,
        )

    logger.debug(f"[LEDGER] Courier {courier.phone} reconciled, balance {courier.balance}")
    return report


# ============================================
# PAYOUT REQUESTS
# ============================================

def get_payout(payout_id) -> PayoutRequest:
    try:
        return PayoutRequest.objects.select_related('courier').get(pk=payout_id)
    except (PayoutRequest.DoesNotExist, ValueError, ValidationError):
        raise PayoutNotFound(f"Payout request {payout_id} not found")


def _refuse_processed(payout_id, expected: str):
    payout = get_payout(payout_id)
    raise InvalidTransition(
        f"Payout request is {payout.status}, expected {expected}",
        payout_id=str(payout.pk),
        current_status=payout.status,
    )


def request_payout(courier_id, amount, payment_method: str, account_info: dict = None) -> PayoutRequest:
    """
    Courier asks to be paid out.

    Nothing is debited yet; the balance is only checked here and again on
    completion.
    """
    amount = _amount(amount)
    minimum = _amount(settings.MIN_PAYOUT_AMOUNT)
    if amount < minimum:
        raise PayoutBelowMinimum(f"Minimum payout is {minimum}", minimum=str(minimum))

    try:
        courier = Courier.objects.get(pk=courier_id)
    except (Courier.DoesNotExist, ValueError, ValidationError):
        raise CourierNotFound(f"Courier {courier_id} not found")

    if courier.balance < amount:
        raise InsufficientBalance(f"Balance {courier.balance} is lower than {amount}")

    payout = PayoutRequest.objects.create(
        courier=courier,
        amount=amount,
        payment_method=payment_method,
        account_info=account_info or {},
    )
    logger.info(f"[PAYOUT] Courier {courier.phone} requested {amount} via {payment_method}")
    return payout


@transaction.atomic
def approve_payout(payout_id, operator=None, notes: str = "") -> PayoutRequest:
    payout = get_payout(payout_id)
    if payout.status == PayoutStatus.PENDING and payout.courier.balance < payout.amount:
        raise InsufficientBalance(f"Balance {payout.courier.balance} is lower than {payout.amount}")

    updated = PayoutRequest.objects.filter(pk=payout_id, status=PayoutStatus.PENDING).update(
        status=PayoutStatus.APPROVED,
        processed_by=operator,
        processed_at=timezone.now(),
        admin_notes=notes,
    )
    if not updated:
        _refuse_processed(payout_id, PayoutStatus.PENDING)

    logger.info(f"[PAYOUT] {payout_id} approved")
    return get_payout(payout_id)


@transaction.atomic
def reject_payout(payout_id, operator=None, reason: str = "") -> PayoutRequest:
    get_payout(payout_id)
    updated = PayoutRequest.objects.filter(pk=payout_id, status=PayoutStatus.PENDING).update(
        status=PayoutStatus.REJECTED,
        processed_by=operator,
        processed_at=timezone.now(),
        admin_notes=reason,
    )
    if not updated:
        _refuse_processed(payout_id, PayoutStatus.PENDING)

    logger.info(f"[PAYOUT] {payout_id} rejected: {reason or 'no reason given'}")
    return get_payout(payout_id)


@transaction.atomic
def complete_payout(payout_id, operator=None) -> PayoutRequest:
    """
    Mark an approved payout as paid and debit the courier.

    Status change and debit share one transaction: if the balance no longer
    covers the amount, neither happens.
    """
    get_payout(payout_id)
    updated = PayoutRequest.objects.filter(pk=payout_id, status=PayoutStatus.APPROVED).update(
        status=PayoutStatus.COMPLETED,
        completed_at=timezone.now(),
    )
    if not updated:
        _refuse_processed(payout_id, PayoutStatus.APPROVED)

    payout = get_payout(payout_id)
    debit(
        payout.courier_id,
        payout.amount,
        reference=f"payout:{payout.pk}",
        payout_request=payout,
        note=f"Payout via {payout.payment_method}",
        created_by=operator,
    )

    logger.info(f"[PAYOUT] {payout_id} completed, {payout.amount} paid to courier {payout.courier.phone}")
    return payout
