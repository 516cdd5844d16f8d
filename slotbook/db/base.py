from slotbook.db.session import Base
from slotbook.models.listing import Listing
from slotbook.models.schedule_slot import ScheduleSlot
from slotbook.models.promotion import Promotion, listing_promotions
from slotbook.models.booking import Booking
from slotbook.models.payment import Payment
from slotbook.models.notification import Notification
