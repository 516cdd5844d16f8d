import uuid
import enum
from sqlalchemy import Column, Boolean, DateTime, DECIMAL, Enum, ForeignKey, Table, func, Uuid
from sqlalchemy.orm import relationship
from slotbook.db.session import Base

class PromotionType(str, enum.Enum):
    PercentageDiscount = "PercentageDiscount"
    FixedAmountDiscount = "FixedAmountDiscount"

listing_promotions = Table(
    "listing_promotions",
    Base.metadata,
    Column("listing_id", Uuid(as_uuid=True), ForeignKey("listings.id"), primary_key=True),
    Column("promotion_id", Uuid(as_uuid=True), ForeignKey("promotions.id"), primary_key=True),
)

class Promotion(Base):
    __tablename__ = "promotions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    partner_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    type = Column(Enum(PromotionType, name="promotion_type"), nullable=False)
    value = Column(DECIMAL(10, 2), nullable=False)
    is_active = Column(Boolean, default=True)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    listings = relationship("Listing", secondary=listing_promotions, back_populates="promotions")
