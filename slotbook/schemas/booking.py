from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, UUID4
from decimal import Decimal
from datetime import datetime

from slotbook.models.booking import BookingStatus, CancellationSource
from slotbook.models.payment import PaymentStatus


# Reservation: Create (POST /reservations)
class ReservationCreate(BaseModel):
    schedule_id: UUID4
    num_participants: int = Field(1, ge=1)


# Reservation: Update (PATCH /reservations/{id}), only while CONFIRMED
class ReservationUpdate(BaseModel):
    num_participants: int = Field(..., ge=1)


# Nested response objects
class BookingSlotSummary(BaseModel):
    id: UUID4
    start_time: datetime
    end_time: datetime

    class Config:
        from_attributes = True


class BookingPaymentSummary(BaseModel):
    id: UUID4
    status: PaymentStatus
    amount: Decimal
    currency: str
    payment_gateway: str
    gateway_transaction_id: str
    failure_reason: Optional[str] = None

    class Config:
        from_attributes = True


# Booking: Full response (POST /reservations, GET /reservations/{id}, ...)
class Booking(BaseModel):
    id: UUID4
    booking_number: str
    user_id: UUID
    listing_id: UUID4
    schedule_id: UUID4
    num_participants: int
    total_price: Decimal
    currency: str
    status: BookingStatus
    cancelled_by: Optional[CancellationSource] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    schedule: Optional[BookingSlotSummary] = None
    payment: Optional[BookingPaymentSummary] = None

    class Config:
        from_attributes = True


# Checkout: booking moved to AWAITING_PAYMENT plus what the client needs to pay
class CheckoutResponse(BaseModel):
    booking: Booking
    gateway_transaction_id: str
    client_secret: Optional[str] = None
