from uuid import UUID
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session, joinedload

from slotbook.db.session import get_db
from slotbook.db.unit_of_work import UnitOfWork
from slotbook.api.deps import get_current_partner, get_notifier, get_orchestrator
from slotbook.core.security import Principal
from slotbook.models.booking import Booking, BookingStatus
from slotbook.models.listing import Listing
from slotbook.services.notifier import Notifier
from slotbook.services.orchestrator import ReservationOrchestrator
from slotbook.schemas.booking import Booking as BookingSchema
from slotbook.schemas.common import PaginatedResponse, ErrorResponse

router = APIRouter(prefix="/partner/reservations", tags=["Partner - Reservations"])


# GET /partner/reservations: bookings on the partner's listings
@router.get("/", response_model=PaginatedResponse[BookingSchema])
def list_partner_reservations(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    listing_id: Optional[UUID] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    partner: Principal = Depends(get_current_partner),
):
    query = (
        db.query(Booking)
        .join(Listing, Listing.id == Booking.listing_id)
        .filter(Listing.partner_id == partner.user_id)
    )
    if status_filter:
        query = query.filter(Booking.status == status_filter)
    if listing_id:
        query = query.filter(Booking.listing_id == listing_id)

    total = query.count()
    bookings = (
        query.options(joinedload(Booking.schedule), joinedload(Booking.payment))
        .order_by(Booking.created_at.desc(), Booking.booking_number)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return PaginatedResponse(
        data=bookings,
        total=total,
        page=page,
        limit=limit,
        total_pages=-(-total // limit) if total else 0,
    )


# POST /partner/reservations/{id}/approve: PENDING -> AWAITING_PAYMENT
@router.post(
    "/{booking_id}/approve",
    response_model=BookingSchema,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def approve_reservation(
    booking_id: UUID,
    db: Session = Depends(get_db),
    partner: Principal = Depends(get_current_partner),
    orchestrator: ReservationOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
):
    """Accept a pending booking; the customer is asked to pay."""
    with UnitOfWork(db, publisher=notifier.publish) as uow:
        booking = orchestrator.approve(uow, partner, booking_id)
    return booking


# POST /partner/reservations/{id}/cancel
@router.post(
    "/{booking_id}/cancel",
    response_model=BookingSchema,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def cancel_reservation(
    booking_id: UUID,
    db: Session = Depends(get_db),
    partner: Principal = Depends(get_current_partner),
    orchestrator: ReservationOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
):
    """Cancel a booking on one of the partner's listings and free its places."""
    with UnitOfWork(db, publisher=notifier.publish) as uow:
        booking = orchestrator.cancel(uow, partner, booking_id, as_partner=True)
    return booking
