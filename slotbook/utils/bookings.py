import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from slotbook.core.exceptions import ReservationError
from slotbook.db.unit_of_work import UnitOfWork
from slotbook.models.booking import Booking, BookingStatus
from slotbook.models.schedule_slot import ScheduleSlot
from slotbook.services.orchestrator import ReservationOrchestrator

logger = logging.getLogger(__name__)


def complete_finished_bookings(
    db: Session,
    orchestrator: ReservationOrchestrator,
    now: Optional[datetime] = None,
) -> int:
    """
    Move CONFIRMED bookings to COMPLETED once their slot has ended.

    A booking is finished when its slot's ``end_time`` is earlier than ``now``
    (UTC). Each booking completes in its own transaction; one that changed
    state in the meantime (e.g. cancelled) is skipped.

    Returns the number of bookings completed.
    """
    now = now or datetime.now(timezone.utc)

    booking_ids = [
        booking_id
        for (booking_id,) in (
            db.query(Booking.id)
            .join(ScheduleSlot, ScheduleSlot.id == Booking.schedule_id)
            .filter(
                Booking.status == BookingStatus.CONFIRMED,
                ScheduleSlot.end_time < now,
            )
            .all()
        )
    ]
    db.rollback()

    completed = 0
    for booking_id in booking_ids:
        try:
            with UnitOfWork(db) as uow:
                orchestrator.complete(uow, booking_id)
            completed += 1
        except ReservationError as e:
            logger.info("Skipped completing booking %s: %s", booking_id, e.message)
    return completed
