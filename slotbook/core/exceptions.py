"""
Reservation engine errors.

Every business-rule violation raised by the ledger, orchestrator or payment
reconciliation maps to exactly one HTTP status; the API layer renders them
through a single exception handler (see slotbook.main).
"""

from typing import Any, Dict, Optional

from fastapi import status


class ReservationError(Exception):
    """Base class for all engine errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **details: Any) -> None:
        self.message = message
        self.details: Dict[str, Any] = details
        super().__init__(message)

    @property
    def code(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.details}


class CapacityExceeded(ReservationError):
    """Not enough remaining capacity on the slot."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, available: int, requested: int) -> None:
        super().__init__(
            f"Not enough available slots. Only {available} left.",
            available=available,
            requested=requested,
        )
        self.available = available
        self.requested = requested


class SlotUnavailable(ReservationError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, schedule_id: Any) -> None:
        super().__init__("This time slot is no longer available.", schedule_id=str(schedule_id))


class InvalidStateTransition(ReservationError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, action: str, current_status: Any, message: Optional[str] = None) -> None:
        current = getattr(current_status, "value", current_status)
        super().__init__(
            message or f"Cannot {action.replace('_', ' ')} a booking that is {current}.",
            action=action,
            current_status=current,
        )


class Forbidden(ReservationError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(ReservationError):
    status_code = status.HTTP_404_NOT_FOUND


class PaymentRecordNotFound(ReservationError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, gateway_transaction_id: str) -> None:
        super().__init__(
            f"No payment record for gateway transaction {gateway_transaction_id}.",
            gateway_transaction_id=gateway_transaction_id,
        )


class PaymentStatusMismatch(ReservationError):
    """An unsigned notification claims an outcome the gateway does not report."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, gateway_transaction_id: str, reported: str, actual: str) -> None:
        super().__init__(
            f"Gateway reports '{actual}' for transaction {gateway_transaction_id}, not '{reported}'.",
            gateway_transaction_id=gateway_transaction_id,
            reported_status=reported,
            gateway_status=actual,
        )


class ExternalServiceUnavailable(ReservationError):
    """The payment gateway (or another collaborator) failed or timed out."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class CompensationFailed(ReservationError):
    """
    A compensating action for a cross-system write could not be applied.

    Raised when a local transaction rolled back after an external side effect
    (e.g. a gateway payment intent) was already created and undoing that side
    effect failed too. Requires manual follow-up.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
