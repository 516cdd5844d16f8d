import uuid
from sqlalchemy import Column, String, DateTime, func, Uuid
from sqlalchemy.orm import relationship
from slotbook.db.session import Base

class Listing(Base):
    """Catalog listing. Read-only from the reservation engine's point of view."""

    __tablename__ = "listings"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    partner_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    currency = Column(String(3), default="MAD")
    status = Column(String(20), default="active", index=True) # active, draft, archived
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    schedule_slots = relationship("ScheduleSlot", back_populates="listing", cascade="all, delete-orphan")
    promotions = relationship(
        "Promotion",
        secondary="listing_promotions",
        back_populates="listings",
    )
    bookings = relationship("Booking", back_populates="listing")
