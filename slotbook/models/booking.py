import uuid
import enum
from sqlalchemy import Column, String, DateTime, func, DECIMAL, Integer, ForeignKey, Enum, CheckConstraint, Uuid
from sqlalchemy.orm import relationship
from slotbook.db.session import Base

class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"

class CancellationSource(str, enum.Enum):
    user = "user"
    partner = "partner"
    system = "system"

# Allowed source states for every booking transition. Anything else is rejected
# with InvalidStateTransition before a single row is written.
BOOKING_TRANSITIONS = {
    "request_payment": {BookingStatus.PENDING},
    "confirm": {BookingStatus.PENDING, BookingStatus.AWAITING_PAYMENT},
    "cancel": {BookingStatus.PENDING, BookingStatus.AWAITING_PAYMENT, BookingStatus.CONFIRMED},
    "update_participants": {BookingStatus.CONFIRMED},
    "complete": {BookingStatus.CONFIRMED},
}

class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("num_participants >= 1", name="ck_bookings_participants_positive"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    booking_number = Column(String(20), unique=True, nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    listing_id = Column(Uuid(as_uuid=True), ForeignKey("listings.id"), nullable=False, index=True)
    schedule_id = Column(Uuid(as_uuid=True), ForeignKey("schedule_slots.id"), nullable=False, index=True)
    num_participants = Column(Integer, nullable=False)
    total_price = Column(DECIMAL(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(Enum(BookingStatus, name="booking_status"), nullable=False, default=BookingStatus.PENDING, index=True)
    cancelled_by = Column(Enum(CancellationSource, name="cancellation_source"), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    # Relationships
    listing = relationship("Listing", back_populates="bookings")
    schedule = relationship("ScheduleSlot", back_populates="bookings")
    payment = relationship("Payment", back_populates="booking", uselist=False)
