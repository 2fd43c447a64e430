from datetime import timedelta
from decimal import Decimal
import asyncio
import uuid

import pytest
from sqlalchemy import select

from app.core.config import settings
from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotApprovedError,
    NotFoundError,
    OutsideHoursError,
    TransientStorageError,
    ValidationError,
)
from app.core.locks import KeyedLockRegistry
from app.models.booking import Booking, BookingStatus, PaymentStatus
from app.models.course import Course
from app.models.tutor_profile import TutorProfile
from app.models.user import UserRole
from app.services import booking_lifecycle as lifecycle
from app.services.booking_lifecycle import BookingState
from app.services.booking_service import BookingService
from tests.conftest import MONDAY, TUESDAY, actor_for, create_user


@pytest.mark.asyncio
async def test_create_booking_snapshots_price_and_starts_pending(create_booking, student, tutor, notifier):
    booking = await create_booking(10 * 60, 11 * 60)

    assert booking.status == BookingStatus.PENDING
    assert booking.payment_status == PaymentStatus.PENDING
    assert booking.total_amount == Decimal("500")
    assert booking.currency == settings.DEFAULT_CURRENCY
    assert booking.duration_minutes == 60
    assert booking.student_id == student.id
    assert booking.meeting_link.startswith(settings.MEETING_LINK_BASE)
    assert booking.reschedule_history == []
    await notifier.drain()
    assert notifier.names() == ["requested"]


@pytest.mark.asyncio
async def test_create_booking_uses_tutor_meeting_link(db, create_booking, tutor):
    profile = (await db.execute(select(TutorProfile).where(TutorProfile.user_id == tutor.id))).scalar_one()
    profile.meeting_link = "https://zoom.us/j/123"
    await db.commit()

    booking = await create_booking(13 * 60, 14 * 60)

    assert booking.meeting_link == "https://zoom.us/j/123"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "start,end,duration,error",
    [
        (8 * 60, 9 * 60, 60, OutsideHoursError),
        (16 * 60 + 30, 17 * 60 + 30, 60, OutsideHoursError),
        (10 * 60, 10 * 60 + 20, 20, ValidationError),
        (10 * 60, 11 * 60, 90, ValidationError),
        (11 * 60, 10 * 60, -60, ValidationError),
    ],
)
async def test_create_booking_rejects_bad_intervals(booking_service, student, tutor, course, start, end, duration, error):
    with pytest.raises(error):
        await booking_service.create_booking(
            student=actor_for(student),
            tutor_id=tutor.id,
            course_id=course.id,
            session_date=MONDAY,
            start_minute=start,
            end_minute=end,
            duration_minutes=duration,
        )


@pytest.mark.asyncio
async def test_create_booking_on_day_without_window(create_booking):
    with pytest.raises(OutsideHoursError):
        await create_booking(10 * 60, 11 * 60, session_date=TUESDAY)


@pytest.mark.asyncio
async def test_create_booking_in_the_past(create_booking, clock):
    clock.hours_before(MONDAY, 10 * 60, -1)

    with pytest.raises(ValidationError):
        await create_booking(10 * 60, 11 * 60)


@pytest.mark.asyncio
async def test_only_students_can_book(booking_service, tutor, course):
    with pytest.raises(ForbiddenError):
        await booking_service.create_booking(
            student=actor_for(tutor),
            tutor_id=tutor.id,
            course_id=course.id,
            session_date=MONDAY,
            start_minute=10 * 60,
            end_minute=11 * 60,
            duration_minutes=60,
        )


@pytest.mark.asyncio
async def test_unknown_and_unapproved_tutors(db, booking_service, student, course):
    pending_tutor = await create_user(db, UserRole.TUTOR, "Pending Tutor", is_approved=False)
    db.add(TutorProfile(user_id=pending_tutor.id, hourly_rate=Decimal("300")))
    await db.commit()

    for tutor_id, error in ((uuid.uuid4(), NotFoundError), (pending_tutor.id, NotApprovedError)):
        with pytest.raises(error):
            await booking_service.create_booking(
                student=actor_for(student),
                tutor_id=tutor_id,
                course_id=course.id,
                session_date=MONDAY,
                start_minute=10 * 60,
                end_minute=11 * 60,
                duration_minutes=60,
            )


@pytest.mark.asyncio
async def test_course_must_belong_to_tutor(db, booking_service, student, tutor):
    other_tutor = await create_user(db, UserRole.TUTOR, "Other Tutor")
    foreign_course = Course(tutor_id=other_tutor.id, title="Physics")
    db.add(foreign_course)
    await db.commit()

    with pytest.raises(NotFoundError):
        await booking_service.create_booking(
            student=actor_for(student),
            tutor_id=tutor.id,
            course_id=foreign_course.id,
            session_date=MONDAY,
            start_minute=10 * 60,
            end_minute=11 * 60,
            duration_minutes=60,
        )


@pytest.mark.asyncio
async def test_overlapping_request_conflicts(create_booking, other_student):
    await create_booking(10 * 60, 11 * 60)

    with pytest.raises(ConflictError):
        await create_booking(10 * 60 + 30, 11 * 60 + 30, as_student=other_student)

    adjacent = await create_booking(11 * 60, 12 * 60, as_student=other_student)
    assert adjacent.status == BookingStatus.PENDING


@pytest.mark.asyncio
async def test_concurrent_requests_for_same_interval(session_factory, locks, clock, student, other_student, tutor, course):
    async def book(session, user):
        service = BookingService(session, locks, clock=clock)
        return await service.create_booking(
            student=actor_for(user),
            tutor_id=tutor.id,
            course_id=course.id,
            session_date=MONDAY,
            start_minute=10 * 60,
            end_minute=11 * 60,
            duration_minutes=60,
        )

    async with session_factory() as first, session_factory() as second:
        results = await asyncio.gather(book(first, student), book(second, other_student), return_exceptions=True)

    created = [result for result in results if isinstance(result, Booking)]
    conflicts = [result for result in results if isinstance(result, ConflictError)]
    assert len(created) == 1
    assert len(conflicts) == 1
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_confirm_by_tutor(booking_service, create_booking, tutor, notifier):
    booking = await create_booking()

    confirmed = await booking_service.confirm_booking(booking.id, actor_for(tutor))

    assert confirmed.status == BookingStatus.CONFIRMED
    await notifier.drain()
    assert notifier.names() == ["requested", "confirmed"]


@pytest.mark.asyncio
async def test_confirm_by_student_forbidden(booking_service, create_booking, student):
    booking = await create_booking()

    with pytest.raises(ForbiddenError):
        await booking_service.confirm_booking(booking.id, actor_for(student))


@pytest.mark.asyncio
async def test_confirm_non_pending_leaves_record_unchanged(session_factory, booking_service, create_booking, tutor, locks):
    booking = await create_booking()
    await booking_service.confirm_booking(booking.id, actor_for(tutor))

    async with session_factory() as session:
        before = await BookingService(session, locks).get_booking_for_update(booking.id)
        snapshot = (before.status, before.total_amount, before.version, len(before.reschedule_history))

    with pytest.raises(InvalidStateError):
        await booking_service.confirm_booking(booking.id, actor_for(tutor))

    async with session_factory() as session:
        after = await BookingService(session, locks).get_booking_for_update(booking.id)
        assert (after.status, after.total_amount, after.version, len(after.reschedule_history)) == snapshot


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "hours,refund,payment_status",
    [
        (25, Decimal("500.00"), PaymentStatus.REFUNDED),
        (10, Decimal("250.00"), PaymentStatus.REFUNDED),
        (1, Decimal("0"), PaymentStatus.PENDING),
    ],
)
async def test_cancel_refund_by_notice(booking_service, create_booking, student, clock, hours, refund, payment_status):
    booking = await create_booking()
    clock.hours_before(MONDAY, 10 * 60, hours)

    cancelled, decision = await booking_service.cancel_booking(booking.id, actor_for(student), "Travelling")

    assert decision.refund_amount == refund
    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.refund_amount == refund
    assert cancelled.payment_status == payment_status
    assert cancelled.cancelled_by == student.id
    assert cancelled.cancellation_reason == "Travelling"


@pytest.mark.asyncio
async def test_cancel_twice_rejected(booking_service, create_booking, tutor):
    booking = await create_booking()
    await booking_service.cancel_booking(booking.id, actor_for(tutor))

    with pytest.raises(InvalidStateError):
        await booking_service.cancel_booking(booking.id, actor_for(tutor))


@pytest.mark.asyncio
async def test_cancel_completed_booking_leaves_record_unchanged(
    session_factory, booking_service, create_booking, student, tutor, locks, clock
):
    booking = await create_booking()
    booking_id = booking.id
    await booking_service.confirm_booking(booking_id, actor_for(tutor))
    await booking_service.complete_booking(booking_id, actor_for(tutor))

    def snapshot(record):
        return (
            record.status, record.refund_amount, record.payment_status,
            record.cancelled_at, record.cancelled_by, record.version,
        )

    async with session_factory() as session:
        before = snapshot(await BookingService(session, locks).get_booking_for_update(booking_id))

    clock.hours_before(MONDAY, 10 * 60, 48)
    with pytest.raises(InvalidStateError):
        await booking_service.cancel_booking(booking_id, actor_for(student), "Too late")

    async with session_factory() as session:
        after = snapshot(await BookingService(session, locks).get_booking_for_update(booking_id))

    assert after == before
    assert after[0] == BookingStatus.COMPLETED
    assert after[1] == 0
    assert after[3] is None


@pytest.mark.asyncio
async def test_cancel_by_stranger_forbidden(booking_service, create_booking, other_student):
    booking = await create_booking()

    with pytest.raises(ForbiddenError):
        await booking_service.cancel_booking(booking.id, actor_for(other_student))


@pytest.mark.asyncio
async def test_stale_write_is_rejected(session_factory, booking_service, create_booking, student, tutor, locks, clock):
    booking = await create_booking()
    booking_id = booking.id

    async with session_factory() as session:
        stale_service = BookingService(session, locks, clock=clock)
        stale = await stale_service.get_booking_for_update(booking_id)

        await booking_service.confirm_booking(booking_id, actor_for(tutor))

        decision = stale_service.policy.decide(stale.total_amount, 30)
        transition = lifecycle.cancel(
            BookingState.from_booking(stale),
            lifecycle.Cancel(actor=actor_for(student), reason=None, refund=decision, now=clock()),
        )
        lifecycle.apply(stale, transition)

        with pytest.raises(ConflictError):
            await stale_service._commit()

    current = await booking_service.get_booking(booking_id, actor_for(student))
    assert current.status == BookingStatus.CONFIRMED


@pytest.mark.asyncio
async def test_complete_and_attendance(booking_service, create_booking, student, tutor, clock):
    booking = await create_booking()
    await booking_service.confirm_booking(booking.id, actor_for(tutor))

    clock.hours_before(MONDAY, 10 * 60, 0)
    joined = await booking_service.record_attendance(booking.id, actor_for(student))
    assert joined.status == BookingStatus.IN_PROGRESS
    assert joined.student_joined_at == clock()

    clock.advance(minutes=60)
    completed = await booking_service.complete_booking(booking.id, actor_for(tutor))
    assert completed.status == BookingStatus.COMPLETED
    assert completed.session_ended_at == clock()


@pytest.mark.asyncio
async def test_complete_pending_rejected(booking_service, create_booking, tutor):
    booking = await create_booking()

    with pytest.raises(InvalidStateError):
        await booking_service.complete_booking(booking.id, actor_for(tutor))


@pytest.mark.asyncio
async def test_reschedule_moves_booking_and_appends_history(booking_service, create_booking, student, notifier):
    booking = await create_booking(10 * 60, 11 * 60)

    moved = await booking_service.reschedule_booking(
        booking.id, actor_for(student), MONDAY, 14 * 60, 15 * 60, reason="Class clash"
    )

    assert (moved.session_date, moved.start_minute, moved.end_minute) == (MONDAY, 14 * 60, 15 * 60)
    assert moved.total_amount == Decimal("500")
    assert len(moved.reschedule_history) == 1
    record = moved.reschedule_history[0]
    assert (record.old_start_minute, record.new_start_minute) == (10 * 60, 14 * 60)
    assert record.reason == "Class clash"
    assert record.requested_by == student.id
    await notifier.drain()
    assert notifier.names()[-1] == "rescheduled"


@pytest.mark.asyncio
async def test_reschedule_into_own_interval_is_not_a_conflict(booking_service, create_booking, student):
    booking = await create_booking(10 * 60, 11 * 60)

    moved = await booking_service.reschedule_booking(booking.id, actor_for(student), MONDAY, 10 * 60 + 30, 11 * 60 + 30)

    assert moved.start_minute == 10 * 60 + 30


@pytest.mark.asyncio
async def test_reschedule_onto_other_booking_conflicts(booking_service, create_booking, student, other_student):
    booking = await create_booking(10 * 60, 11 * 60)
    booking_id = booking.id
    await create_booking(12 * 60, 13 * 60, as_student=other_student)

    with pytest.raises(ConflictError):
        await booking_service.reschedule_booking(booking_id, actor_for(student), MONDAY, 12 * 60, 13 * 60)

    unchanged = await booking_service.get_booking(booking_id, actor_for(student))
    assert unchanged.start_minute == 10 * 60
    assert unchanged.reschedule_history == []


@pytest.mark.asyncio
async def test_reschedule_validates_new_interval(booking_service, create_booking, student):
    booking = await create_booking(10 * 60, 11 * 60)

    with pytest.raises(ValidationError):
        await booking_service.reschedule_booking(booking.id, actor_for(student), MONDAY, 14 * 60, 16 * 60)
    with pytest.raises(OutsideHoursError):
        await booking_service.reschedule_booking(booking.id, actor_for(student), TUESDAY, 10 * 60, 11 * 60)


@pytest.mark.asyncio
async def test_reschedule_cancelled_booking_rejected(booking_service, create_booking, student):
    booking = await create_booking()
    await booking_service.cancel_booking(booking.id, actor_for(student))

    with pytest.raises(InvalidStateError):
        await booking_service.reschedule_booking(booking.id, actor_for(student), MONDAY, 14 * 60, 15 * 60)


@pytest.mark.asyncio
async def test_feedback_overwrite_keeps_other_side(booking_service, create_booking, student, tutor):
    booking = await create_booking()
    await booking_service.confirm_booking(booking.id, actor_for(tutor))
    await booking_service.complete_booking(booking.id, actor_for(tutor))

    await booking_service.add_feedback(booking.id, actor_for(student), 5, "Very clear")
    await booking_service.add_feedback(booking.id, actor_for(tutor), 4, "Well prepared")
    updated = await booking_service.add_feedback(booking.id, actor_for(student), 3, "Went too fast")

    assert (updated.student_rating, updated.student_comment) == (3, "Went too fast")
    assert (updated.tutor_rating, updated.tutor_comment) == (4, "Well prepared")


@pytest.mark.asyncio
async def test_feedback_before_completion_rejected(booking_service, create_booking, student):
    booking = await create_booking()

    with pytest.raises(InvalidStateError):
        await booking_service.add_feedback(booking.id, actor_for(student), 5)


@pytest.mark.asyncio
async def test_get_booking_visibility(booking_service, create_booking, student, tutor, other_student, admin):
    booking = await create_booking()

    assert (await booking_service.get_booking(booking.id, actor_for(tutor))).id == booking.id
    assert (await booking_service.get_booking(booking.id, actor_for(admin))).id == booking.id
    with pytest.raises(ForbiddenError):
        await booking_service.get_booking(booking.id, actor_for(other_student))
    with pytest.raises(NotFoundError):
        await booking_service.get_booking(uuid.uuid4(), actor_for(student))


@pytest.mark.asyncio
async def test_list_and_upcoming_bookings(booking_service, create_booking, student, tutor, other_student):
    first = await create_booking(10 * 60, 11 * 60)
    second = await create_booking(12 * 60, 13 * 60)
    await create_booking(14 * 60, 15 * 60, as_student=other_student)
    await booking_service.confirm_booking(second.id, actor_for(tutor))

    bookings, total = await booking_service.list_bookings(actor_for(student))
    assert total == 2
    assert [booking.id for booking in bookings] == [second.id, first.id]

    page, total = await booking_service.list_bookings(actor_for(tutor), limit=2, offset=2)
    assert total == 3
    assert len(page) == 1

    confirmed, total = await booking_service.list_bookings(actor_for(student), status=BookingStatus.CONFIRMED)
    assert total == 1
    assert confirmed[0].id == second.id

    upcoming = await booking_service.upcoming_bookings(actor_for(student))
    assert [booking.id for booking in upcoming] == [second.id]
    assert await booking_service.upcoming_bookings(actor_for(other_student)) == []


@pytest.mark.asyncio
async def test_lock_timeout_surfaces_as_transient_error(service_db, notifier, clock, create_booking, student):
    tight_locks = KeyedLockRegistry(timeout=0.05)
    service = BookingService(service_db, tight_locks, notifier=notifier, clock=clock)
    booking = await create_booking()

    async with tight_locks.hold(f"tutor:{booking.tutor_id}"):
        with pytest.raises(TransientStorageError):
            await service.reschedule_booking(
                booking.id, actor_for(student), MONDAY, 14 * 60, 15 * 60
            )


@pytest.mark.asyncio
async def test_pending_booking_is_never_overdue(booking_service, create_booking, clock):
    booking = await create_booking()
    clock.advance(days=7)

    state = BookingState.from_booking(await booking_service.get_booking_for_update(booking.id))
    assert not lifecycle.is_overdue(state, clock())
    assert not lifecycle.is_upcoming(state, clock() + timedelta(days=1))
