"""
Booking transition events.

Built inside a unit of work and handed to the Notifier once the transaction
has committed. The payload shape is what the Notifier stores and pushes:
``{type, booking_id, title, message, recipient_user_id}``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict
from uuid import UUID, uuid4

BOOKING_CONFIRMED = "booking_confirmed"
BOOKING_CANCELLED = "booking_cancelled"
BOOKING_CANCELLED_BY_PARTNER = "booking_cancelled_by_partner"
BOOKING_PENDING_APPROVAL = "booking_pending_approval"
BOOKING_APPROVED_FOR_PAYMENT = "booking_approved_for_payment"


@dataclass(frozen=True)
class BookingEvent:
    type: str
    booking_id: UUID
    recipient_user_id: UUID
    title: str
    message: str
    event_id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "booking_id": str(self.booking_id),
            "title": self.title,
            "message": self.message,
            "recipient_user_id": str(self.recipient_user_id),
            "event_id": str(self.event_id),
            "occurred_at": self.occurred_at.isoformat(),
        }


def _listing_title(booking) -> str:
    listing = booking.listing
    return listing.title if listing is not None else "your experience"


def booking_confirmed(booking) -> BookingEvent:
    title = _listing_title(booking)
    return BookingEvent(
        type=BOOKING_CONFIRMED,
        booking_id=booking.id,
        recipient_user_id=booking.user_id,
        title="Booking Confirmed",
        message=f"Your booking for {title} is confirmed! Ref: {booking.booking_number}",
    )


def booking_cancelled(booking, by_partner: bool = False) -> BookingEvent:
    title = _listing_title(booking)
    if by_partner:
        return BookingEvent(
            type=BOOKING_CANCELLED_BY_PARTNER,
            booking_id=booking.id,
            recipient_user_id=booking.user_id,
            title=f"Booking Cancelled: {title}",
            message=f"Your booking #{booking.booking_number} for {title} was cancelled by the host.",
        )
    return BookingEvent(
        type=BOOKING_CANCELLED,
        booking_id=booking.id,
        recipient_user_id=booking.user_id,
        title="Booking Cancelled",
        message=f"Your booking #{booking.booking_number} has been cancelled.",
    )


def approval_pending(booking, partner_id: UUID) -> BookingEvent:
    title = _listing_title(booking)
    return BookingEvent(
        type=BOOKING_PENDING_APPROVAL,
        booking_id=booking.id,
        recipient_user_id=partner_id,
        title=f"New booking request for {title}",
        message=(
            f"Booking #{booking.booking_number} for {booking.num_participants} "
            f"participant(s) is waiting for your approval."
        ),
    )


def approved_for_payment(booking) -> BookingEvent:
    title = _listing_title(booking)
    return BookingEvent(
        type=BOOKING_APPROVED_FOR_PAYMENT,
        booking_id=booking.id,
        recipient_user_id=booking.user_id,
        title=f"Action Required: Your booking for {title} is approved!",
        message="Your booking is approved and is now awaiting payment. Please complete the payment to confirm your spot.",
    )
