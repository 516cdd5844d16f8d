from typing import List
from pydantic import BaseModel, UUID4
from decimal import Decimal
from datetime import date, datetime


# Slot availability: GET /availability
class SlotAvailability(BaseModel):
    id: UUID4
    listing_id: UUID4
    start_time: datetime
    end_time: datetime
    price: Decimal
    currency: str
    capacity: int
    booked_slots: int
    available_slots: int

    class Config:
        from_attributes = True


class AvailabilityResponse(BaseModel):
    listing_id: UUID4
    day: date
    slots: List[SlotAvailability]
