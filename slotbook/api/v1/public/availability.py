from uuid import UUID
from datetime import date, datetime, time, timedelta, timezone

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from slotbook.db.session import get_db
from slotbook.core.exceptions import NotFound
from slotbook.models.listing import Listing
from slotbook.models.schedule_slot import ScheduleSlot
from slotbook.schemas.schedule_slot import AvailabilityResponse, SlotAvailability
from slotbook.schemas.common import ErrorResponse

router = APIRouter(prefix="/availability", tags=["Availability"])


@router.get("/", response_model=AvailabilityResponse, responses={404: {"model": ErrorResponse}})
def get_availability(
    listing_id: UUID = Query(...),
    day: date = Query(..., alias="date", description="Calendar day (UTC)"),
    db: Session = Depends(get_db),
):
    """
    Bookable slots of a listing on one day, ordered by start time.

    Only slots that are available and still have places left are returned.
    """
    listing = db.query(Listing).filter(Listing.id == listing_id).first()
    if not listing:
        raise NotFound("Listing not found.", listing_id=str(listing_id))

    day_start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    day_end = day_start + timedelta(days=1)

    slots = (
        db.query(ScheduleSlot)
        .filter(
            ScheduleSlot.listing_id == listing_id,
            ScheduleSlot.is_available == True,  # noqa: E712
            ScheduleSlot.booked_slots < ScheduleSlot.capacity,
            ScheduleSlot.start_time >= day_start,
            ScheduleSlot.start_time < day_end,
        )
        .order_by(ScheduleSlot.start_time)
        .all()
    )

    return AvailabilityResponse(
        listing_id=listing_id,
        day=day,
        slots=[SlotAvailability.model_validate(slot) for slot in slots],
    )
