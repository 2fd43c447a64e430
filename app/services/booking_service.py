from datetime import date, datetime
from typing import Callable, List, Optional, Sequence, Tuple
import logging
import uuid

from sqlalchemy import select, and_, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from app.core.clock import utc_now, session_datetime, hours_between, local_today, MINUTES_PER_DAY
from app.core.config import settings
from app.core.exceptions import (
    ConflictError, ForbiddenError, NotFoundError, TransientStorageError, ValidationError
)
from app.core.locks import KeyedLockRegistry
from app.core.pricing import CancellationPolicy, RefundDecision, calculate_session_price
from app.models.booking import Booking, BookingReschedule, BookingStatus, PaymentMethod, PaymentStatus
from app.models.course import Course
from app.models.tutor_profile import TutorProfile
from app.models.user import UserRole
from app.services import booking_lifecycle as lifecycle
from app.services.availability_service import AvailabilityService
from app.services.booking_lifecycle import Actor, BookingState
from app.services.conflicts import ensure_no_conflict
from app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


class BookingService:
    """Booking lifecycle orchestration: creation, transitions, reschedules and feedback"""

    def __init__(
        self,
        db: AsyncSession,
        locks: KeyedLockRegistry,
        notifier: Optional[NotificationService] = None,
        clock: Callable[[], datetime] = utc_now,
        policy: Optional[CancellationPolicy] = None,
    ):
        self.db = db
        self.locks = locks
        self.notifier = notifier
        self.clock = clock
        self.policy = policy or CancellationPolicy()
        self.availability = AvailabilityService(db)

    # Creation

    async def create_booking(
        self,
        student: Actor,
        tutor_id: uuid.UUID,
        course_id: uuid.UUID,
        session_date: date,
        start_minute: int,
        end_minute: int,
        duration_minutes: int,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        notes: Optional[str] = None,
        session_objectives: Optional[Sequence[str]] = None,
    ) -> Booking:
        """Create a pending booking after an atomic conflict check"""
        if student.role != UserRole.STUDENT:
            raise ForbiddenError("Only students can book sessions")

        self._validate_interval(session_date, start_minute, end_minute)
        if duration_minutes != end_minute - start_minute:
            raise ValidationError("Duration does not match the requested start and end times")
        if not isinstance(payment_method, PaymentMethod):
            raise ValidationError(f"Unsupported payment method '{payment_method}'")
        objectives = [str(objective) for objective in (session_objectives or [])]

        tutor = await self.availability.get_bookable_tutor(tutor_id)
        profile = tutor.tutor_profile
        if profile is None:
            raise NotFoundError("Tutor profile not found")

        course = await self.db.get(Course, course_id)
        if course is None or course.deleted_at is not None or not course.is_active or course.tutor_id != tutor.id:
            raise NotFoundError("Course not found or does not belong to this tutor")

        await self.availability.ensure_within_hours(tutor.id, session_date, start_minute, end_minute)

        total_amount = calculate_session_price(profile.hourly_rate, duration_minutes)

        async with self.locks.hold(self._tutor_lock_key(tutor.id)):
            try:
                await self._lock_tutor_row(tutor.id)
                await ensure_no_conflict(self.db, tutor.id, session_date, start_minute, end_minute)

                booking = Booking(
                    student_id=student.user_id,
                    tutor_id=tutor.id,
                    course_id=course.id,
                    session_date=session_date,
                    start_minute=start_minute,
                    end_minute=end_minute,
                    duration_minutes=duration_minutes,
                    total_amount=total_amount,
                    currency=profile.currency or settings.DEFAULT_CURRENCY,
                    status=BookingStatus.PENDING,
                    payment_status=PaymentStatus.PENDING,
                    payment_method=payment_method,
                    meeting_link=profile.meeting_link or self._default_meeting_link(tutor.id),
                    notes=notes,
                    session_objectives=objectives,
                    refund_amount=0,
                    reschedule_history=[],
                )
                self.db.add(booking)
            except ConflictError:
                await self.db.rollback()
                raise
            await self._commit()

        logger.info(f"Booking {booking.id} requested by student {student.user_id} with tutor {tutor.id}")
        if self.notifier:
            self.notifier.dispatch(self.notifier.send_booking_requested(booking))
        return booking

    # Lifecycle transitions

    async def confirm_booking(self, booking_id: uuid.UUID, actor: Actor) -> Booking:
        booking = await self._transition(booking_id, lifecycle.confirm, lifecycle.Confirm(actor=actor))
        logger.info(f"Booking {booking.id} confirmed by tutor {actor.user_id}")
        if self.notifier:
            self.notifier.dispatch(self.notifier.send_booking_confirmed(booking))
        return booking

    async def cancel_booking(
        self,
        booking_id: uuid.UUID,
        actor: Actor,
        reason: Optional[str] = None
    ) -> Tuple[Booking, RefundDecision]:
        """Cancel a booking and compute the refund from the notice given"""
        now = self.clock()
        booking = await self.get_booking_for_update(booking_id)
        state = BookingState.from_booking(booking)

        decision = self.policy.decide(booking.total_amount, hours_between(now, state.starts_at))
        transition = lifecycle.cancel(state, lifecycle.Cancel(actor=actor, reason=reason, refund=decision, now=now))
        lifecycle.apply(booking, transition)
        await self._commit()

        logger.info(
            f"Booking {booking.id} cancelled by {actor.user_id} "
            f"({decision.hours_until_session:.1f}h notice, refund {decision.refund_amount})"
        )
        if self.notifier:
            self.notifier.dispatch(self.notifier.send_booking_cancelled(booking, actor.user_id))
        return booking, decision

    async def complete_booking(self, booking_id: uuid.UUID, actor: Actor) -> Booking:
        booking = await self._transition(
            booking_id, lifecycle.complete, lifecycle.Complete(actor=actor, now=self.clock())
        )
        logger.info(f"Booking {booking.id} completed by tutor {actor.user_id}")
        if self.notifier:
            self.notifier.dispatch(self.notifier.send_booking_completed(booking))
        return booking

    async def record_attendance(self, booking_id: uuid.UUID, actor: Actor) -> Booking:
        booking = await self._transition(
            booking_id, lifecycle.record_attendance, lifecycle.RecordAttendance(actor=actor, now=self.clock())
        )
        logger.info(f"{actor.role.value.capitalize()} {actor.user_id} joined booking {booking.id}")
        return booking

    async def reschedule_booking(
        self,
        booking_id: uuid.UUID,
        actor: Actor,
        new_date: date,
        new_start_minute: int,
        new_end_minute: int,
        reason: Optional[str] = None
    ) -> Booking:
        """Move a booking, re-validating the new interval before committing"""
        now = self.clock()
        self._validate_interval(new_date, new_start_minute, new_end_minute)

        booking = await self.get_booking_for_update(booking_id)
        command = lifecycle.Reschedule(
            actor=actor,
            new_date=new_date,
            new_start_minute=new_start_minute,
            new_end_minute=new_end_minute,
            reason=reason,
            now=now,
        )
        transition = lifecycle.reschedule(BookingState.from_booking(booking), command)

        if new_end_minute - new_start_minute != booking.duration_minutes:
            raise ValidationError("Rescheduled session must keep the booked duration")

        await self.availability.ensure_within_hours(booking.tutor_id, new_date, new_start_minute, new_end_minute)

        async with self.locks.hold(self._tutor_lock_key(booking.tutor_id)):
            try:
                await self._lock_tutor_row(booking.tutor_id)
                await ensure_no_conflict(
                    self.db, booking.tutor_id, new_date, new_start_minute, new_end_minute,
                    exclude_booking_id=booking.id
                )
            except ConflictError:
                await self.db.rollback()
                raise

            record = BookingReschedule(booking_id=booking.id, **transition.history)
            lifecycle.apply(booking, transition)
            booking.reschedule_history.append(record)
            await self._commit()

        logger.info(f"Booking {booking.id} rescheduled by {actor.user_id} to {new_date}")
        if self.notifier:
            self.notifier.dispatch(self.notifier.send_booking_rescheduled(booking, actor.user_id))
        return booking

    async def add_feedback(
        self,
        booking_id: uuid.UUID,
        actor: Actor,
        rating: int,
        comment: Optional[str] = None
    ) -> Booking:
        booking = await self._transition(
            booking_id,
            lifecycle.submit_feedback,
            lifecycle.SubmitFeedback(actor=actor, rating=rating, comment=comment, now=self.clock()),
        )
        logger.info(f"Feedback from {actor.role.value} {actor.user_id} recorded on booking {booking.id}")
        if self.notifier:
            self.notifier.dispatch(self.notifier.send_feedback_received(booking, actor.user_id))
        return booking

    # Queries

    async def get_booking(self, booking_id: uuid.UUID, actor: Actor) -> Booking:
        booking = await self._load_booking(booking_id)
        if actor.role != UserRole.ADMIN and actor.user_id not in (booking.student_id, booking.tutor_id):
            raise ForbiddenError("Not authorized to view this booking")
        return booking

    async def get_booking_for_update(self, booking_id: uuid.UUID) -> Booking:
        return await self._load_booking(booking_id, for_update=True)

    async def list_bookings(
        self,
        actor: Actor,
        status: Optional[BookingStatus] = None,
        limit: int = 10,
        offset: int = 0
    ) -> Tuple[List[Booking], int]:
        """A participant's bookings, most recent session first, with the total count"""
        conditions = self._participant_conditions(actor)
        if status is not None:
            conditions.append(Booking.status == status)

        total = await self.db.scalar(select(func.count(Booking.id)).where(and_(*conditions)))
        result = await self.db.execute(
            select(Booking)
            .where(and_(*conditions))
            .options(selectinload(Booking.reschedule_history))
            .order_by(Booking.session_date.desc(), Booking.start_minute.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0

    async def upcoming_bookings(self, actor: Actor) -> List[Booking]:
        """Confirmed or running sessions from today on, soonest first"""
        conditions = self._participant_conditions(actor)
        conditions.extend([
            Booking.status.in_([BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS]),
            Booking.session_date >= local_today(self.clock()),
        ])
        result = await self.db.execute(
            select(Booking)
            .where(and_(*conditions))
            .options(selectinload(Booking.reschedule_history))
            .order_by(Booking.session_date, Booking.start_minute)
        )
        return list(result.scalars().all())

    # Internals

    async def _transition(self, booking_id: uuid.UUID, decide, command) -> Booking:
        booking = await self.get_booking_for_update(booking_id)
        transition = decide(BookingState.from_booking(booking), command)
        lifecycle.apply(booking, transition)
        await self._commit()
        return booking

    async def _load_booking(self, booking_id: uuid.UUID, for_update: bool = False) -> Booking:
        query = (
            select(Booking)
            .where(and_(Booking.id == booking_id, Booking.deleted_at.is_(None)))
            .options(selectinload(Booking.reschedule_history))
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()

        result = await self.db.execute(query)
        booking = result.scalar_one_or_none()
        if booking is None:
            raise NotFoundError("Booking not found")
        return booking

    async def _lock_tutor_row(self, tutor_id: uuid.UUID) -> None:
        """Serialize check-and-write across processes on databases with row locks"""
        await self.db.execute(
            select(TutorProfile.id).where(TutorProfile.user_id == tutor_id).with_for_update()
        )

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except StaleDataError as exc:
            await self.db.rollback()
            raise ConflictError("Booking was modified by another request, please retry") from exc
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error(f"Failed to persist booking change: {exc}")
            raise TransientStorageError("Could not save booking, please retry") from exc

    def _validate_interval(self, session_date: date, start_minute: int, end_minute: int) -> None:
        if not 0 <= start_minute < end_minute <= MINUTES_PER_DAY:
            raise ValidationError("Start time must be before end time")
        if end_minute - start_minute < settings.MIN_SESSION_MINUTES:
            raise ValidationError(f"Minimum session duration is {settings.MIN_SESSION_MINUTES} minutes")
        if session_datetime(session_date, start_minute) <= self.clock():
            raise ValidationError("Cannot book a session in the past")

    @staticmethod
    def _participant_conditions(actor: Actor) -> list:
        conditions = [Booking.deleted_at.is_(None)]
        if actor.role == UserRole.STUDENT:
            conditions.append(Booking.student_id == actor.user_id)
        elif actor.role == UserRole.TUTOR:
            conditions.append(Booking.tutor_id == actor.user_id)
        return conditions

    @staticmethod
    def _tutor_lock_key(tutor_id: uuid.UUID) -> str:
        return f"tutor:{tutor_id}"

    @staticmethod
    def _default_meeting_link(tutor_id: uuid.UUID) -> str:
        return f"{settings.MEETING_LINK_BASE}{tutor_id.hex[:12]}"
