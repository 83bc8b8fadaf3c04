"""
CORE App - Dispatch Error Taxonomy for CITYDROP

Every state-mutating service raises one of these. The DRF exception handler
below turns them into `{"error": ..., "code": ...}` responses so views never
have to translate them by hand.
"""

import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class DispatchError(Exception):
    """Base class for all domain errors."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = 'dispatch_error'
    default_message = "Operation failed"

    def __init__(self, message: str = "", **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)


class InvalidTransition(DispatchError):
    """Requested move is not legal from the order's current state."""
    code = 'invalid_transition'
    default_message = "Transition not allowed from the current status"


class NotAssignedCourier(InvalidTransition):
    """A courier tried to move an order assigned to someone else."""
    status_code = status.HTTP_403_FORBIDDEN
    code = 'not_assigned_courier'
    default_message = "Order is assigned to another courier"


class StaleState(DispatchError):
    """Lost a race: the order was already moved by someone else."""
    status_code = status.HTTP_409_CONFLICT
    code = 'stale_state'
    default_message = "Order was already updated by someone else"


class AlreadyTaken(StaleState):
    code = 'already_taken'
    default_message = "Order was already taken by another courier"


class CourierBlocked(DispatchError):
    status_code = status.HTTP_403_FORBIDDEN
    code = 'courier_blocked'
    default_message = "Courier is blocked or inactive"


class InsufficientBalance(DispatchError):
    code = 'insufficient_balance'
    default_message = "Insufficient balance"


class PayoutBelowMinimum(DispatchError):
    code = 'payout_below_minimum'
    default_message = "Amount is below the minimum payout"


class NotFound(DispatchError):
    status_code = status.HTTP_404_NOT_FOUND
    code = 'not_found'
    default_message = "Not found"


class OrderNotFound(NotFound):
    code = 'order_not_found'
    default_message = "Order not found"


class CourierNotFound(NotFound):
    code = 'courier_not_found'
    default_message = "Courier not found"


class PayoutNotFound(NotFound):
    code = 'payout_not_found'
    default_message = "Payout request not found"


class IntegrityViolation(DispatchError):
    """
    Data-integrity breach (double credit, ledger/balance mismatch).

    Never auto-corrected: the offending operation is rolled back and the
    condition is logged for an operator to investigate.
    """
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = 'integrity_violation'
    default_message = "Data integrity violation"


class DistanceUnavailable(DispatchError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = 'distance_unavailable'
    default_message = "Distance service unavailable"


def dispatch_exception_handler(exc, context):
    """DRF exception handler that knows about DispatchError."""
    if isinstance(exc, DispatchError):
        if isinstance(exc, IntegrityViolation):
            logger.critical(f"[API] Integrity violation: {exc.message} {exc.context}")
        return Response(
            {'error': exc.message, 'code': exc.code},
            status=exc.status_code
        )
    return exception_handler(exc, context)
