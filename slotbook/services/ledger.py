"""
Availability ledger.

The only code allowed to change ``ScheduleSlot.booked_slots``. Every function
takes the caller's unit of work so the capacity change commits or rolls back
together with the booking write that depends on it.

Capacity is protected twice: the slot row is read with ``SELECT ... FOR UPDATE``
(serialising concurrent reservations on Postgres), and the increment itself is
a guarded ``UPDATE ... WHERE booked_slots + n <= capacity`` whose row count is
checked, so ``0 <= booked_slots <= capacity`` holds even where row locks are
not available.
"""

import logging
from uuid import UUID

from sqlalchemy import case, update

from slotbook.core.exceptions import CapacityExceeded, NotFound, SlotUnavailable
from slotbook.db.unit_of_work import UnitOfWork
from slotbook.models.schedule_slot import ScheduleSlot

logger = logging.getLogger(__name__)


def _lock_slot(uow: UnitOfWork, schedule_id: UUID) -> ScheduleSlot:
    slot = uow.get_for_update(ScheduleSlot, schedule_id)
    if slot is None:
        raise NotFound("Schedule slot not found.", schedule_id=str(schedule_id))
    return slot


def reserve(uow: UnitOfWork, schedule_id: UUID, n: int) -> ScheduleSlot:
    """Take ``n`` places on the slot or fail without writing anything."""
    if n < 1:
        raise ValueError("Number of participants must be at least 1")

    slot = _lock_slot(uow, schedule_id)
    if not slot.is_available:
        raise SlotUnavailable(schedule_id)

    available = slot.capacity - slot.booked_slots
    if n > available:
        logger.info(
            "Slot %s: rejected reservation of %d (only %d left)", schedule_id, n, available
        )
        raise CapacityExceeded(available=max(0, available), requested=n)

    result = uow.session.execute(
        update(ScheduleSlot)
        .where(
            ScheduleSlot.id == schedule_id,
            ScheduleSlot.is_available == True,  # noqa: E712
            ScheduleSlot.booked_slots + n <= ScheduleSlot.capacity,
        )
        .values(booked_slots=ScheduleSlot.booked_slots + n)
        .execution_options(synchronize_session=False)
    )
    uow.session.refresh(slot)

    if result.rowcount != 1:
        # Lost the race against a concurrent reservation on the same slot
        if not slot.is_available:
            raise SlotUnavailable(schedule_id)
        raise CapacityExceeded(available=max(0, slot.capacity - slot.booked_slots), requested=n)

    logger.debug("Slot %s: reserved %d, booked %d/%d", schedule_id, n, slot.booked_slots, slot.capacity)
    return slot


def release(uow: UnitOfWork, schedule_id: UUID, n: int) -> ScheduleSlot:
    """Give back ``n`` places; ``booked_slots`` never drops below zero."""
    slot = _lock_slot(uow, schedule_id)
    if n <= 0:
        return slot

    remaining = ScheduleSlot.booked_slots - n
    uow.session.execute(
        update(ScheduleSlot)
        .where(ScheduleSlot.id == schedule_id)
        .values(booked_slots=case((remaining < 0, 0), else_=remaining))
        .execution_options(synchronize_session=False)
    )
    uow.session.refresh(slot)

    logger.debug("Slot %s: released %d, booked %d/%d", schedule_id, n, slot.booked_slots, slot.capacity)
    return slot


def adjust(uow: UnitOfWork, schedule_id: UUID, delta: int) -> ScheduleSlot:
    """Signed change for participant-count updates on an existing booking."""
    if delta > 0:
        return reserve(uow, schedule_id, delta)
    if delta < 0:
        return release(uow, schedule_id, -delta)
    return _lock_slot(uow, schedule_id)
