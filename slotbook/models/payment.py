import uuid
import enum
from sqlalchemy import Column, String, DateTime, func, DECIMAL, ForeignKey, Enum, Text, JSON, Uuid
from sqlalchemy.orm import relationship
from slotbook.db.session import Base

class PaymentStatus(str, enum.Enum):
    pending = "pending"
    succeeded = "succeeded"
    failed = "failed"

class Payment(Base):
    __tablename__ = "payments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    booking_id = Column(Uuid(as_uuid=True), ForeignKey("bookings.id"), nullable=False, unique=True)
    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    amount = Column(DECIMAL(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(Enum(PaymentStatus, name="payment_status"), nullable=False, default=PaymentStatus.pending, index=True)
    payment_gateway = Column(String(30), nullable=False)
    # Reconciliation key: webhooks and direct submits look payments up by it
    gateway_transaction_id = Column(String(255), nullable=False, unique=True, index=True)
    payment_method_details = Column(JSON, nullable=True)
    failure_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    booking = relationship("Booking", back_populates="payment")
