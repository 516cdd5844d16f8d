from typing import Literal
from pydantic import BaseModel

from slotbook.models.booking import BookingStatus
from slotbook.models.payment import PaymentStatus


# Plain webhook body (POST /webhooks/payments without a Stripe signature)
class PaymentWebhook(BaseModel):
    gateway_transaction_id: str
    status: Literal["succeeded", "failed"]


class PaymentConfirmation(BaseModel):
    gateway_transaction_id: str
    payment_status: PaymentStatus
    booking_status: BookingStatus
