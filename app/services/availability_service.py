from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, delete
from sqlalchemy.orm import selectinload
from typing import List, Dict, Any, Optional, Sequence, Tuple
from datetime import date
import logging
import uuid

from app.core.clock import weekday_name, format_time_of_day, MINUTES_PER_DAY
from app.core.config import settings
from app.core.exceptions import NotFoundError, NotApprovedError, OutsideHoursError, ValidationError
from app.models.availability import TutorAvailability, Weekday
from app.models.booking import ACTIVE_STATUSES
from app.models.user import User, UserRole
from app.services.conflicts import get_bookings_for_day, partition_free_slots

logger = logging.getLogger(__name__)


class AvailabilityService:
    """Service for tutor weekly availability and free slot computation"""

    def __init__(self, db: AsyncSession, granularity_minutes: int = None):
        self.db = db
        self.granularity = granularity_minutes or settings.SLOT_GRANULARITY_MINUTES

    async def get_bookable_tutor(self, tutor_id: uuid.UUID) -> User:
        """Load a tutor that students may book"""
        tutor = await self.db.get(
            User, tutor_id, options=[selectinload(User.tutor_profile)], populate_existing=True
        )
        if tutor is None or tutor.deleted_at is not None or tutor.role != UserRole.TUTOR:
            raise NotFoundError("Tutor not found")
        if not tutor.is_bookable_tutor:
            raise NotApprovedError("Tutor not found or not approved")
        return tutor

    async def resolve_window(self, tutor_id: uuid.UUID, target_date: date) -> Optional[TutorAvailability]:
        """Recurring window covering the weekday of ``target_date``, if any"""
        result = await self.db.execute(
            select(TutorAvailability).where(
                and_(
                    TutorAvailability.tutor_id == tutor_id,
                    TutorAvailability.weekday == Weekday(weekday_name(target_date)),
                    TutorAvailability.deleted_at.is_(None)
                )
            )
        )
        return result.scalars().first()

    async def get_availability(self, tutor_id: uuid.UUID, target_date: date) -> Dict[str, Any]:
        """Free slots of a tutor on one date"""
        tutor = await self.get_bookable_tutor(tutor_id)
        day_of_week = weekday_name(target_date)
        hourly_rate = tutor.tutor_profile.hourly_rate if tutor.tutor_profile else None

        response = {
            "tutor_id": tutor.id,
            "tutor_name": tutor.name,
            "hourly_rate": hourly_rate,
            "date": target_date,
            "day_of_week": day_of_week,
            "available": False,
            "slot_duration_minutes": self.granularity,
            "available_slots": [],
            "total_slots": 0,
            "message": None,
        }

        window = await self.resolve_window(tutor.id, target_date)
        if window is None:
            response["message"] = "Tutor is not available on this day"
            return response

        bookings = await get_bookings_for_day(self.db, tutor.id, target_date, ACTIVE_STATUSES)
        slots = partition_free_slots(
            window.start_minute,
            window.end_minute,
            [(booking.start_minute, booking.end_minute) for booking in bookings],
            self.granularity,
        )

        response.update({
            "available": True,
            "window_start": format_time_of_day(window.start_minute),
            "window_end": format_time_of_day(window.end_minute),
            "available_slots": [slot.as_dict() for slot in slots],
            "total_slots": len(slots),
        })
        return response

    async def ensure_within_hours(
        self,
        tutor_id: uuid.UUID,
        target_date: date,
        start_minute: int,
        end_minute: int
    ) -> TutorAvailability:
        """Reject intervals that fall outside the tutor's window for that day"""
        window = await self.resolve_window(tutor_id, target_date)
        if window is None:
            raise OutsideHoursError("Tutor is not available on this day")

        if start_minute < window.start_minute or end_minute > window.end_minute:
            raise OutsideHoursError("Requested time is outside tutor's available hours")
        return window

    async def get_weekly_availability(self, tutor_id: uuid.UUID) -> List[TutorAvailability]:
        result = await self.db.execute(
            select(TutorAvailability).where(
                and_(
                    TutorAvailability.tutor_id == tutor_id,
                    TutorAvailability.deleted_at.is_(None)
                )
            )
        )
        windows = list(result.scalars().all())
        order = list(Weekday)
        return sorted(windows, key=lambda window: order.index(window.weekday))

    async def set_weekly_availability(
        self,
        tutor_id: uuid.UUID,
        windows: Sequence[Tuple[Weekday, int, int]]
    ) -> List[TutorAvailability]:
        """Replace the tutor's whole weekly schedule"""
        seen = set()
        for weekday, start_minute, end_minute in windows:
            if weekday in seen:
                raise ValidationError(f"Duplicate availability for {weekday.value}")
            seen.add(weekday)
            if not 0 <= start_minute < end_minute <= MINUTES_PER_DAY:
                raise ValidationError(f"Start time must be before end time on {weekday.value}")

        try:
            await self.db.execute(delete(TutorAvailability).where(TutorAvailability.tutor_id == tutor_id))
            new_windows = [
                TutorAvailability(
                    tutor_id=tutor_id,
                    weekday=weekday,
                    start_minute=start_minute,
                    end_minute=end_minute
                )
                for weekday, start_minute, end_minute in windows
            ]
            self.db.add_all(new_windows)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Replaced weekly availability for tutor {tutor_id} ({len(new_windows)} windows)")
        return await self.get_weekly_availability(tutor_id)
