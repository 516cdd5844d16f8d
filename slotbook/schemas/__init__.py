from slotbook.schemas.common import PaginatedResponse, ErrorResponse, InsufficientCapacityError, InvalidTransitionError
from slotbook.schemas.booking import (
    ReservationCreate, ReservationUpdate, Booking, BookingSlotSummary,
    BookingPaymentSummary, CheckoutResponse,
)
from slotbook.schemas.payment import PaymentWebhook, PaymentConfirmation
from slotbook.schemas.schedule_slot import SlotAvailability, AvailabilityResponse
from slotbook.schemas.notification import Notification
