"""
Reservation orchestrator.

Drives a Booking through its lifecycle: PENDING -> AWAITING_PAYMENT ->
CONFIRMED -> COMPLETED, with CANCELLED reachable from any non-terminal state.

Every operation runs inside the caller's unit of work. Business-rule checks
(ownership, allowed source state, capacity) happen before the first write, so a
rejected transition leaves the booking, its slot and its payment untouched.
Lock order is always booking row first, then slot row.
"""

import logging
import random
import string
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from slotbook.core.exceptions import Forbidden, InvalidStateTransition, NotFound
from slotbook.core.security import Principal
from slotbook.db.unit_of_work import UnitOfWork
from slotbook.models.booking import Booking, BookingStatus, CancellationSource, BOOKING_TRANSITIONS
from slotbook.models.payment import Payment, PaymentStatus
from slotbook.models.promotion import Promotion, listing_promotions
from slotbook.services import events, ledger
from slotbook.services.payment_gateway import PaymentGateway, PaymentIntent
from slotbook.services.pricing import resolve_price

logger = logging.getLogger(__name__)


def _generate_booking_number(db: Session) -> str:
    """Generate a unique 'SLB-XXXXXXXX' booking reference."""
    chars = string.ascii_uppercase + string.digits
    while True:
        number = "SLB-" + "".join(random.choices(chars, k=8))
        if not db.query(Booking).filter(Booking.booking_number == number).first():
            return number


def listing_promotions_for(db: Session, listing_id: UUID) -> List[Promotion]:
    """Promotions attached to a listing, oldest first (the pricing tie-break order)."""
    return (
        db.query(Promotion)
        .join(listing_promotions, listing_promotions.c.promotion_id == Promotion.id)
        .filter(listing_promotions.c.listing_id == listing_id)
        .order_by(Promotion.created_at, Promotion.id)
        .all()
    )


class ReservationOrchestrator:
    def __init__(self, gateway: PaymentGateway, require_partner_approval: bool = False):
        self.gateway = gateway
        self.require_partner_approval = require_partner_approval

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_reservation(
        self,
        uow: UnitOfWork,
        principal: Principal,
        schedule_id: UUID,
        num_participants: int,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Reserve places on a slot and persist a PENDING booking.

        A booking that prices to zero is confirmed in the same transaction and
        never gets a Payment row.
        """
        now = now or datetime.now(timezone.utc)
        db = uow.session

        slot = ledger.reserve(uow, schedule_id, num_participants)
        listing = slot.listing

        promotions = listing_promotions_for(db, slot.listing_id)
        total_price = resolve_price(slot.price, num_participants, promotions, now)

        booking = Booking(
            booking_number=_generate_booking_number(db),
            user_id=principal.user_id,
            listing_id=slot.listing_id,
            schedule_id=slot.id,
            num_participants=num_participants,
            total_price=total_price,
            currency=slot.currency or listing.currency,
            status=BookingStatus.PENDING,
        )
        db.add(booking)
        db.flush()

        logger.info(
            "Booking %s created on slot %s for %d participant(s), total %s %s",
            booking.booking_number, schedule_id, num_participants, total_price, booking.currency,
        )

        if total_price == 0:
            self.confirm_booking(uow, booking, now)
        elif self.require_partner_approval:
            uow.add_event(events.approval_pending(booking, listing.partner_id))

        return booking

    # ------------------------------------------------------------------
    # PENDING -> AWAITING_PAYMENT
    # ------------------------------------------------------------------

    def checkout(self, uow: UnitOfWork, principal: Principal, booking_id: UUID) -> Tuple[Booking, PaymentIntent]:
        """Customer moves their own PENDING booking to payment (direct flow only)."""
        booking = self._lock_booking(uow, booking_id)
        self._ensure_owner(booking, principal)
        if self.require_partner_approval:
            raise Forbidden(
                "This booking must be approved by the partner before payment.",
                booking_id=str(booking.id),
            )
        self._ensure_transition(booking, "request_payment")

        intent = self._request_payment(uow, booking)
        return booking, intent

    def approve(self, uow: UnitOfWork, principal: Principal, booking_id: UUID) -> Booking:
        """The listing's partner accepts a PENDING booking and opens payment."""
        booking = self._lock_booking(uow, booking_id)
        self._ensure_partner(booking, principal)
        self._ensure_transition(booking, "request_payment")

        self._request_payment(uow, booking)
        uow.add_event(events.approved_for_payment(booking))
        return booking

    def _request_payment(self, uow: UnitOfWork, booking: Booking) -> PaymentIntent:
        intent = self.gateway.create_intent(
            amount=booking.total_price,
            currency=booking.currency,
            booking_id=booking.id,
        )
        # The intent already exists at the gateway; undo it if this transaction rolls back
        uow.add_compensation(
            f"cancel payment intent {intent.transaction_id}",
            lambda: self.gateway.cancel_intent(intent.transaction_id),
        )

        uow.session.add(Payment(
            booking_id=booking.id,
            user_id=booking.user_id,
            amount=booking.total_price,
            currency=booking.currency,
            status=PaymentStatus.pending,
            payment_gateway=self.gateway.name,
            gateway_transaction_id=intent.transaction_id,
        ))
        booking.status = BookingStatus.AWAITING_PAYMENT
        uow.session.flush()

        logger.info(
            "Booking %s awaiting payment, intent %s", booking.booking_number, intent.transaction_id
        )
        return intent

    # ------------------------------------------------------------------
    # -> CONFIRMED
    # ------------------------------------------------------------------

    def confirm_booking(self, uow: UnitOfWork, booking: Booking, now: Optional[datetime] = None) -> Booking:
        """Confirm an already locked booking. Used for free bookings and paid ones."""
        self._ensure_transition(booking, "confirm")

        # Guarded on the source state so that only one of two racing confirmations wins
        result = uow.session.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status.in_(list(BOOKING_TRANSITIONS["confirm"])))
            .values(status=BookingStatus.CONFIRMED, confirmed_at=now or datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        uow.session.refresh(booking)
        if result.rowcount != 1:
            raise InvalidStateTransition("confirm", booking.status)

        uow.add_event(events.booking_confirmed(booking))

        logger.info("Booking %s confirmed", booking.booking_number)
        return booking

    # ------------------------------------------------------------------
    # -> CANCELLED
    # ------------------------------------------------------------------

    def cancel(
        self,
        uow: UnitOfWork,
        principal: Principal,
        booking_id: UUID,
        as_partner: bool = False,
        now: Optional[datetime] = None,
    ) -> Booking:
        booking = self._lock_booking(uow, booking_id)
        if as_partner:
            self._ensure_partner(booking, principal)
        else:
            self._ensure_owner(booking, principal)
        self._ensure_transition(booking, "cancel")

        ledger.release(uow, booking.schedule_id, booking.num_participants)

        payment = booking.payment
        if booking.status == BookingStatus.AWAITING_PAYMENT and payment is not None \
                and payment.status == PaymentStatus.pending:
            transaction_id = payment.gateway_transaction_id
            # The gateway reports the intent as canceled; reconciliation then fails the payment
            uow.add_after_commit(
                f"cancel payment intent {transaction_id}",
                lambda: self.gateway.cancel_intent(transaction_id),
            )

        booking.status = BookingStatus.CANCELLED
        booking.cancelled_at = now or datetime.now(timezone.utc)
        booking.cancelled_by = CancellationSource.partner if as_partner else CancellationSource.user
        uow.add_event(events.booking_cancelled(booking, by_partner=as_partner))

        logger.info(
            "Booking %s cancelled by %s, released %d place(s)",
            booking.booking_number, booking.cancelled_by.value, booking.num_participants,
        )
        return booking

    # ------------------------------------------------------------------
    # CONFIRMED -> CONFIRMED (participants changed)
    # ------------------------------------------------------------------

    def update_participants(
        self,
        uow: UnitOfWork,
        principal: Principal,
        booking_id: UUID,
        num_participants: int,
        now: Optional[datetime] = None,
    ) -> Booking:
        if num_participants < 1:
            raise ValueError("Number of participants must be at least 1")
        now = now or datetime.now(timezone.utc)

        booking = self._lock_booking(uow, booking_id)
        self._ensure_owner(booking, principal)
        self._ensure_transition(booking, "update_participants")

        delta = num_participants - booking.num_participants
        slot = ledger.adjust(uow, booking.schedule_id, delta)

        promotions = listing_promotions_for(uow.session, booking.listing_id)
        booking.num_participants = num_participants
        booking.total_price = resolve_price(slot.price, num_participants, promotions, now)
        uow.session.flush()

        logger.info(
            "Booking %s now has %d participant(s) (delta %+d), total %s",
            booking.booking_number, num_participants, delta, booking.total_price,
        )
        return booking

    # ------------------------------------------------------------------
    # CONFIRMED -> COMPLETED
    # ------------------------------------------------------------------

    def complete(self, uow: UnitOfWork, booking_id: UUID) -> Booking:
        booking = self._lock_booking(uow, booking_id)
        self._ensure_transition(booking, "complete")

        booking.status = BookingStatus.COMPLETED
        logger.info("Booking %s completed", booking.booking_number)
        return booking

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    @staticmethod
    def _lock_booking(uow: UnitOfWork, booking_id: UUID) -> Booking:
        booking = uow.get_for_update(Booking, booking_id)
        if booking is None:
            raise NotFound("Booking not found.", booking_id=str(booking_id))
        return booking

    @staticmethod
    def _ensure_owner(booking: Booking, principal: Principal) -> None:
        if booking.user_id != principal.user_id:
            logger.warning("User %s denied access to booking %s", principal.user_id, booking.id)
            raise Forbidden("You do not own this booking.", booking_id=str(booking.id))

    @staticmethod
    def _ensure_partner(booking: Booking, principal: Principal) -> None:
        listing = booking.listing
        if not principal.is_partner or listing is None or listing.partner_id != principal.user_id:
            logger.warning("Partner %s denied access to booking %s", principal.user_id, booking.id)
            raise Forbidden("This booking is not for one of your listings.", booking_id=str(booking.id))

    @staticmethod
    def _ensure_transition(booking: Booking, action: str) -> None:
        if booking.status not in BOOKING_TRANSITIONS[action]:
            logger.warning(
                "Rejected %s on booking %s in status %s", action, booking.id, booking.status.value
            )
            raise InvalidStateTransition(action, booking.status)
