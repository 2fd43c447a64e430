"""Interval overlap detection against a tutor's active bookings.

All intervals are half-open ``[start, end)`` in minutes since midnight.
"""
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Sequence, Tuple
import uuid

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import format_time_of_day
from app.core.exceptions import ConflictError, ValidationError
from app.models.booking import Booking, BookingStatus, ACTIVE_STATUSES


@dataclass(frozen=True)
class FreeSlot:
    start_minute: int
    end_minute: int
    available: bool = True

    @property
    def duration(self) -> int:
        return self.end_minute - self.start_minute

    def as_dict(self) -> dict:
        return {
            "start_time": format_time_of_day(self.start_minute),
            "end_time": format_time_of_day(self.end_minute),
            "duration": self.duration,
            "available": self.available,
        }


def intervals_overlap(start: int, end: int, other_start: int, other_end: int) -> bool:
    return start < other_end and other_start < end


def partition_free_slots(
    window_start: int,
    window_end: int,
    busy: Iterable[Tuple[int, int]],
    granularity: int = 30,
) -> List[FreeSlot]:
    """Split a window into fixed slots, dropping occupied and trailing partial ones"""
    if granularity <= 0:
        raise ValidationError("Slot granularity must be positive")

    busy = list(busy)
    slots = []
    current = window_start
    while current + granularity <= window_end:
        slot_end = current + granularity
        if not any(intervals_overlap(current, slot_end, busy_start, busy_end) for busy_start, busy_end in busy):
            slots.append(FreeSlot(start_minute=current, end_minute=slot_end))
        current = slot_end

    return slots


async def get_bookings_for_day(
    db: AsyncSession,
    tutor_id: uuid.UUID,
    session_date: date,
    statuses: Sequence[BookingStatus],
) -> List[Booking]:
    result = await db.execute(
        select(Booking).where(
            and_(
                Booking.tutor_id == tutor_id,
                Booking.session_date == session_date,
                Booking.status.in_(list(statuses)),
                Booking.deleted_at.is_(None)
            )
        ).order_by(Booking.start_minute)
    )
    return list(result.scalars().all())


async def find_conflicting_booking(
    db: AsyncSession,
    tutor_id: uuid.UUID,
    session_date: date,
    start_minute: int,
    end_minute: int,
    statuses: Sequence[BookingStatus] = ACTIVE_STATUSES,
    exclude_booking_id: Optional[uuid.UUID] = None,
) -> Optional[Booking]:
    """Evaluate the overlap predicate in the database against current rows"""
    conditions = [
        Booking.tutor_id == tutor_id,
        Booking.session_date == session_date,
        Booking.status.in_(list(statuses)),
        Booking.deleted_at.is_(None),
        Booking.start_minute < end_minute,
        Booking.end_minute > start_minute,
    ]
    if exclude_booking_id is not None:
        conditions.append(Booking.id != exclude_booking_id)

    result = await db.execute(select(Booking).where(and_(*conditions)).limit(1))
    return result.scalars().first()


async def ensure_no_conflict(
    db: AsyncSession,
    tutor_id: uuid.UUID,
    session_date: date,
    start_minute: int,
    end_minute: int,
    exclude_booking_id: Optional[uuid.UUID] = None,
) -> None:
    conflict = await find_conflicting_booking(
        db, tutor_id, session_date, start_minute, end_minute, exclude_booking_id=exclude_booking_id
    )
    if conflict is not None:
        raise ConflictError(
            "This time slot is already booked "
            f"({format_time_of_day(conflict.start_minute)}-{format_time_of_day(conflict.end_minute)}). "
            "Please choose another time."
        )
