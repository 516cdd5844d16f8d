from slotbook.models.listing import Listing
from slotbook.models.schedule_slot import ScheduleSlot
from slotbook.models.promotion import Promotion, PromotionType, listing_promotions
from slotbook.models.booking import Booking, BookingStatus, CancellationSource, BOOKING_TRANSITIONS
from slotbook.models.payment import Payment, PaymentStatus
from slotbook.models.notification import Notification
