from fastapi import APIRouter

# Public: availability
from slotbook.api.v1.public.availability import router as availability_router

# Public: reservations and payment
from slotbook.api.v1.public.reservations import router as reservations_router

# Public: gateway webhooks
from slotbook.api.v1.public.webhooks import router as webhooks_router

# Public: notifications
from slotbook.api.v1.public.me import router as me_router, ws_router

# Partner
from slotbook.api.v1.partner.reservations import router as partner_reservations_router

api_router = APIRouter()

# --- Public ---
api_router.include_router(availability_router)
api_router.include_router(reservations_router)
api_router.include_router(webhooks_router)
api_router.include_router(me_router)
api_router.include_router(ws_router)

# --- Partner ---
api_router.include_router(partner_reservations_router)
