from uuid import UUID
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session, joinedload

from slotbook.db.session import get_db
from slotbook.db.unit_of_work import UnitOfWork
from slotbook.api.deps import get_current_principal, get_notifier, get_orchestrator, get_reconciliation
from slotbook.core.exceptions import NotFound
from slotbook.core.security import Principal
from slotbook.models.booking import Booking, BookingStatus
from slotbook.services.notifier import Notifier
from slotbook.services.orchestrator import ReservationOrchestrator
from slotbook.services.reconciliation import PaymentReconciliationService
from slotbook.schemas.booking import (
    ReservationCreate,
    ReservationUpdate,
    Booking as BookingSchema,
    CheckoutResponse,
)
from slotbook.schemas.common import PaginatedResponse, ErrorResponse, InsufficientCapacityError

router = APIRouter(prefix="/reservations", tags=["Reservations"])


def _load_booking(booking_id: UUID, user_id, db: Session) -> Booking:
    """Load one of the caller's bookings; someone else's booking reads as missing."""
    booking = (
        db.query(Booking)
        .options(joinedload(Booking.schedule), joinedload(Booking.payment))
        .filter(Booking.id == booking_id, Booking.user_id == user_id)
        .first()
    )
    if not booking:
        raise NotFound("Booking not found.", booking_id=str(booking_id))
    return booking


# ---------------------------------------------------------------------------
# POST /reservations: reserve places on a slot
# ---------------------------------------------------------------------------


@router.post(
    "/",
    response_model=BookingSchema,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": InsufficientCapacityError}, 404: {"model": ErrorResponse}},
)
def create_reservation(
    data: ReservationCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    orchestrator: ReservationOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Reserve `num_participants` places on a schedule slot.

    - Capacity is taken immediately; the booking starts as **PENDING**.
    - The total is resolved from the slot price and the best active promotion.
    - A booking that prices to zero is **CONFIRMED** straight away.
    """
    with UnitOfWork(db, publisher=notifier.publish) as uow:
        booking = orchestrator.create_reservation(uow, principal, data.schedule_id, data.num_participants)
    return booking


# ---------------------------------------------------------------------------
# GET /reservations: caller's bookings
# ---------------------------------------------------------------------------


@router.get("/", response_model=PaginatedResponse[BookingSchema])
def list_reservations(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Return the current user's bookings, newest first."""
    query = db.query(Booking).filter(Booking.user_id == principal.user_id)
    if status_filter:
        query = query.filter(Booking.status == status_filter)

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


@router.get("/{booking_id}", response_model=BookingSchema, responses={404: {"model": ErrorResponse}})
def get_reservation(
    booking_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return _load_booking(booking_id, principal.user_id, db)


# ---------------------------------------------------------------------------
# PATCH /reservations/{id}: change the number of participants
# ---------------------------------------------------------------------------


@router.patch("/{booking_id}", response_model=BookingSchema)
def update_reservation(
    booking_id: UUID,
    data: ReservationUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    orchestrator: ReservationOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
):
    """Only a **CONFIRMED** booking can change size; extra places are re-checked against capacity."""
    with UnitOfWork(db, publisher=notifier.publish) as uow:
        booking = orchestrator.update_participants(uow, principal, booking_id, data.num_participants)
    return booking


# ---------------------------------------------------------------------------
# POST /reservations/{id}/cancel
# ---------------------------------------------------------------------------


@router.post("/{booking_id}/cancel", response_model=BookingSchema)
def cancel_reservation(
    booking_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    orchestrator: ReservationOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
):
    """Cancel the booking and give its places back to the slot."""
    with UnitOfWork(db, publisher=notifier.publish) as uow:
        booking = orchestrator.cancel(uow, principal, booking_id)
    return booking


# ---------------------------------------------------------------------------
# POST /reservations/{id}/checkout: PENDING -> AWAITING_PAYMENT
# ---------------------------------------------------------------------------


@router.post("/{booking_id}/checkout", response_model=CheckoutResponse)
def checkout_reservation(
    booking_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    orchestrator: ReservationOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
):
    """Open a payment intent at the gateway for a PENDING booking."""
    with UnitOfWork(db, publisher=notifier.publish) as uow:
        booking, intent = orchestrator.checkout(uow, principal, booking_id)

    return CheckoutResponse(
        booking=BookingSchema.model_validate(booking),
        gateway_transaction_id=intent.transaction_id,
        client_secret=intent.client_secret,
    )


# ---------------------------------------------------------------------------
# POST /reservations/{id}/pay: direct payment submit
# ---------------------------------------------------------------------------


@router.post("/{booking_id}/pay", response_model=BookingSchema)
def submit_payment(
    booking_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    reconciliation: PaymentReconciliationService = Depends(get_reconciliation),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Ask the gateway whether the booking's payment went through.

    Confirms the booking when it did; otherwise the booking is returned
    unchanged with the payment's current status.
    """
    with UnitOfWork(db, publisher=notifier.publish) as uow:
        reconciliation.submit_payment(uow, principal, booking_id)
    return _load_booking(booking_id, principal.user_id, db)
