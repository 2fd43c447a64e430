from datetime import datetime
from typing import Callable, List, Optional
from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import async_sessionmaker
import asyncio
import logging
import uuid

from app.core.clock import utc_now, local_today
from app.core.database import AsyncSessionLocal
from app.core.exceptions import InvalidStateError
from app.models.booking import Booking, BookingStatus
from app.services import booking_lifecycle as lifecycle
from app.services.booking_lifecycle import BookingState
from app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


async def _candidate_booking_ids(session_factory: async_sessionmaker, today) -> List[uuid.UUID]:
    async with session_factory() as db:
        result = await db.execute(
            select(Booking.id).where(
                and_(
                    Booking.status == BookingStatus.CONFIRMED,
                    Booking.session_date <= today,
                    Booking.student_joined_at.is_(None),
                    Booking.tutor_joined_at.is_(None),
                    Booking.deleted_at.is_(None)
                )
            )
        )
        return list(result.scalars().all())


async def mark_missed_sessions(
    session_factory: async_sessionmaker = AsyncSessionLocal,
    clock: Callable[[], datetime] = utc_now,
    notifier: Optional[NotificationService] = None
) -> int:
    """Background task to mark confirmed sessions nobody attended as no-show"""
    now = clock()
    booking_ids = await _candidate_booking_ids(session_factory, local_today(now))
    marked = 0

    for booking_id in booking_ids:
        async with session_factory() as db:
            try:
                result = await db.execute(
                    select(Booking).where(Booking.id == booking_id).with_for_update()
                )
                booking = result.scalar_one_or_none()
                if booking is None:
                    continue

                transition = lifecycle.mark_no_show(BookingState.from_booking(booking), lifecycle.MarkNoShow(now=now))
                lifecycle.apply(booking, transition)
                await db.commit()
            except InvalidStateError:
                # Not over yet, or changed since the candidate query
                await db.rollback()
                continue
            except Exception as e:
                await db.rollback()
                logger.error(f"Error marking booking {booking_id} as no-show: {e}")
                continue

        marked += 1
        logger.info(f"Booking {booking_id} marked as no-show")
        if notifier:
            await notifier.send_no_show(booking)

    if marked:
        logger.info(f"Marked {marked} missed sessions as no-show")
    return marked


async def run_missed_session_sweep(interval_seconds: int = 300):
    """Run the missed-session sweep forever at a fixed interval"""
    notifier = NotificationService(AsyncSessionLocal)
    while True:
        try:
            await mark_missed_sessions(notifier=notifier)
        except Exception as e:
            logger.error(f"Error in missed-session sweep: {e}")
        await asyncio.sleep(interval_seconds)
