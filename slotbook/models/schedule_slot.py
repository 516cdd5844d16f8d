import uuid
from sqlalchemy import Column, String, Boolean, DateTime, Integer, DECIMAL, ForeignKey, CheckConstraint, Uuid
from sqlalchemy.orm import relationship
from slotbook.db.session import Base

class ScheduleSlot(Base):
    __tablename__ = "schedule_slots"
    __table_args__ = (
        CheckConstraint("capacity >= 1", name="ck_schedule_slots_capacity_positive"),
        CheckConstraint("booked_slots >= 0", name="ck_schedule_slots_booked_non_negative"),
        CheckConstraint("booked_slots <= capacity", name="ck_schedule_slots_booked_within_capacity"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    listing_id = Column(Uuid(as_uuid=True), ForeignKey("listings.id"), nullable=False, index=True)
    start_time = Column(DateTime(timezone=True), nullable=False, index=True)
    end_time = Column(DateTime(timezone=True), nullable=False)
    price = Column(DECIMAL(10, 2), nullable=False)  # base unit price per participant
    currency = Column(String(3), nullable=False, default="MAD")
    capacity = Column(Integer, nullable=False)
    # Only ever written by slotbook.services.ledger
    booked_slots = Column(Integer, nullable=False, default=0)
    is_available = Column(Boolean, nullable=False, default=True)

    # Relationships
    listing = relationship("Listing", back_populates="schedule_slots")
    bookings = relationship("Booking", back_populates="schedule")

    @property
    def available_slots(self) -> int:
        return max(0, self.capacity - self.booked_slots)
