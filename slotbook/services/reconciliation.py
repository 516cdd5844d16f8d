"""
Payment reconciliation.

Moves a booking to CONFIRMED once its payment has succeeded at the gateway.
Reachable two ways, which may race or repeat:

* the customer submits the payment directly (``submit_payment``), and
* the gateway calls our webhook, possibly more than once and out of order.

Both end in ``confirm_payment`` keyed by the gateway transaction id. The payment
row is locked before its booking, so concurrent deliveries for the same
transaction serialise and the second one sees the first one's result.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from slotbook.core.exceptions import (
    Forbidden,
    InvalidStateTransition,
    NotFound,
    PaymentRecordNotFound,
    PaymentStatusMismatch,
)
from slotbook.core.security import Principal
from slotbook.db.unit_of_work import UnitOfWork
from slotbook.models.booking import Booking, BookingStatus
from slotbook.models.payment import Payment, PaymentStatus
from slotbook.services.orchestrator import ReservationOrchestrator
from slotbook.services.payment_gateway import PaymentGateway, STATUS_PENDING, STATUS_SUCCEEDED

logger = logging.getLogger(__name__)


class PaymentReconciliationService:
    def __init__(self, gateway: PaymentGateway, orchestrator: ReservationOrchestrator):
        self.gateway = gateway
        self.orchestrator = orchestrator

    def confirm_payment(
        self,
        uow: UnitOfWork,
        gateway_transaction_id: str,
        status: str = STATUS_SUCCEEDED,
        now: Optional[datetime] = None,
    ) -> Payment:
        """
        Apply a gateway outcome to the matching payment and booking.

        Idempotent: a booking that is already CONFIRMED (or COMPLETED after a
        successful payment) is left as is. A non-succeeded status marks the
        payment failed, unless it already succeeded, and never moves the booking.
        A success for a CANCELLED booking is recorded and flagged for refund;
        the booking stays cancelled.
        """
        db = uow.session
        payment = (
            db.query(Payment)
            .filter(Payment.gateway_transaction_id == gateway_transaction_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if payment is None:
            logger.warning("No payment record for gateway transaction %s", gateway_transaction_id)
            raise PaymentRecordNotFound(gateway_transaction_id)

        booking = uow.get_for_update(Booking, payment.booking_id)

        if status == STATUS_PENDING:
            logger.info("Payment %s still pending at the gateway", gateway_transaction_id)
            return payment

        if status != STATUS_SUCCEEDED:
            if payment.status == PaymentStatus.succeeded:
                logger.warning(
                    "Ignoring '%s' for payment %s which already succeeded", status, gateway_transaction_id
                )
                return payment
            payment.status = PaymentStatus.failed
            payment.failure_reason = f"Gateway reported status '{status}'"
            logger.warning(
                "Payment %s for booking %s failed with status '%s'",
                gateway_transaction_id, booking.booking_number, status,
            )
            return payment

        if booking.status == BookingStatus.CONFIRMED or (
            booking.status == BookingStatus.COMPLETED and payment.status == PaymentStatus.succeeded
        ):
            logger.info(
                "Payment %s already reconciled, booking %s is %s",
                gateway_transaction_id, booking.booking_number, booking.status.value,
            )
            return payment

        if booking.status == BookingStatus.CANCELLED:
            # Acknowledged so the gateway stops redelivering; the money goes back by hand
            if payment.status != PaymentStatus.succeeded:
                payment.status = PaymentStatus.succeeded
                payment.failure_reason = "Paid after the booking was cancelled; refund required"
            logger.error(
                "Payment %s succeeded for cancelled booking %s; refund required",
                gateway_transaction_id, booking.booking_number,
            )
            return payment

        try:
            self.orchestrator.confirm_booking(uow, booking, now or datetime.now(timezone.utc))
        except InvalidStateTransition:
            if booking.status != BookingStatus.CONFIRMED:
                raise
            # A concurrent delivery for the same transaction confirmed it first
            logger.info("Payment %s already reconciled by a concurrent delivery", gateway_transaction_id)
            return payment
        payment.status = PaymentStatus.succeeded
        payment.failure_reason = None

        logger.info("Payment %s succeeded, booking %s confirmed", gateway_transaction_id, booking.booking_number)
        return payment

    def confirm_reported_payment(
        self,
        uow: UnitOfWork,
        gateway_transaction_id: str,
        reported_status: str,
        now: Optional[datetime] = None,
    ) -> Payment:
        """
        Reconcile an unsigned notification.

        Nothing vouches for the sender, so the outcome is only applied when the
        gateway itself reports the same status for the intent.
        """
        exists = (
            uow.session.query(Payment.id)
            .filter(Payment.gateway_transaction_id == gateway_transaction_id)
            .first()
        )
        if exists is None:
            logger.warning("No payment record for gateway transaction %s", gateway_transaction_id)
            raise PaymentRecordNotFound(gateway_transaction_id)

        status = self.gateway.retrieve_status(gateway_transaction_id)
        if status != reported_status:
            logger.warning(
                "Rejected notification for %s: reported '%s' but the gateway says '%s'",
                gateway_transaction_id, reported_status, status,
            )
            raise PaymentStatusMismatch(gateway_transaction_id, reported_status, status)

        return self.confirm_payment(uow, gateway_transaction_id, status, now)

    def submit_payment(
        self,
        uow: UnitOfWork,
        principal: Principal,
        booking_id: UUID,
        now: Optional[datetime] = None,
    ) -> Payment:
        """Customer-initiated check: ask the gateway and reconcile what it says."""
        booking = uow.session.query(Booking).filter(Booking.id == booking_id).first()
        if booking is None:
            raise NotFound("Booking not found.", booking_id=str(booking_id))
        if booking.user_id != principal.user_id:
            raise Forbidden("You do not own this booking.", booking_id=str(booking_id))

        payment = booking.payment
        if payment is None:
            raise InvalidStateTransition(
                "pay",
                booking.status,
                message="This booking has no payment to submit.",
            )

        status = self.gateway.retrieve_status(payment.gateway_transaction_id)
        return self.confirm_payment(uow, payment.gateway_transaction_id, status, now)
