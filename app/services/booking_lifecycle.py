"""Booking state machine.

Every transition is a pure function of the current ``BookingState`` and a
command. It either raises (``ForbiddenError``, ``InvalidStateError``,
``ValidationError``) or returns a ``Transition`` describing the field changes,
which the booking service applies explicitly.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional
import uuid

from app.core.clock import session_datetime
from app.core.config import settings
from app.core.exceptions import ForbiddenError, InvalidStateError, ValidationError
from app.core.pricing import RefundDecision
from app.models.booking import BookingStatus, PaymentStatus, TERMINAL_STATUSES
from app.models.user import UserRole


@dataclass(frozen=True)
class Actor:
    user_id: uuid.UUID
    role: UserRole


@dataclass(frozen=True)
class BookingState:
    status: BookingStatus
    student_id: uuid.UUID
    tutor_id: uuid.UUID
    session_date: date
    start_minute: int
    end_minute: int
    total_amount: Decimal
    student_joined_at: Optional[datetime] = None
    tutor_joined_at: Optional[datetime] = None

    @classmethod
    def from_booking(cls, booking) -> "BookingState":
        return cls(
            status=booking.status,
            student_id=booking.student_id,
            tutor_id=booking.tutor_id,
            session_date=booking.session_date,
            start_minute=booking.start_minute,
            end_minute=booking.end_minute,
            total_amount=booking.total_amount,
            student_joined_at=booking.student_joined_at,
            tutor_joined_at=booking.tutor_joined_at,
        )

    @property
    def starts_at(self) -> datetime:
        return session_datetime(self.session_date, self.start_minute)

    @property
    def ends_at(self) -> datetime:
        return session_datetime(self.session_date, self.end_minute)

    def is_participant(self, user_id: uuid.UUID) -> bool:
        return user_id in (self.student_id, self.tutor_id)


@dataclass(frozen=True)
class Transition:
    changes: Dict[str, Any]
    history: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class Confirm:
    actor: Actor


@dataclass(frozen=True)
class Cancel:
    actor: Actor
    reason: Optional[str]
    refund: RefundDecision
    now: datetime


@dataclass(frozen=True)
class Complete:
    actor: Actor
    now: datetime


@dataclass(frozen=True)
class Reschedule:
    actor: Actor
    new_date: date
    new_start_minute: int
    new_end_minute: int
    reason: Optional[str]
    now: datetime


@dataclass(frozen=True)
class SubmitFeedback:
    actor: Actor
    rating: int
    comment: Optional[str]
    now: datetime


@dataclass(frozen=True)
class RecordAttendance:
    actor: Actor
    now: datetime
    early_join_minutes: int = field(default_factory=lambda: settings.EARLY_JOIN_MINUTES)


@dataclass(frozen=True)
class MarkNoShow:
    now: datetime
    grace_minutes: int = field(default_factory=lambda: settings.NO_SHOW_GRACE_MINUTES)


RESCHEDULABLE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)
COMPLETABLE_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS)
ATTENDABLE_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS)


def _require_participant(state: BookingState, actor: Actor, action: str) -> None:
    if not state.is_participant(actor.user_id):
        raise ForbiddenError(f"Not authorized to {action} this booking")


def _require_tutor(state: BookingState, actor: Actor, action: str) -> None:
    if actor.user_id != state.tutor_id:
        raise ForbiddenError(f"Only the tutor can {action} this booking")


def confirm(state: BookingState, command: Confirm) -> Transition:
    _require_tutor(state, command.actor, "confirm")
    if state.status != BookingStatus.PENDING:
        raise InvalidStateError("Only pending bookings can be confirmed")
    return Transition(changes={"status": BookingStatus.CONFIRMED})


def cancel(state: BookingState, command: Cancel) -> Transition:
    _require_participant(state, command.actor, "cancel")
    if state.status in TERMINAL_STATUSES:
        raise InvalidStateError("Cannot cancel completed or already cancelled bookings")

    changes = {
        "status": BookingStatus.CANCELLED,
        "cancellation_reason": command.reason,
        "cancelled_by": command.actor.user_id,
        "cancelled_at": command.now,
        "refund_amount": command.refund.refund_amount,
    }
    if command.refund.refunds_payment:
        changes["payment_status"] = PaymentStatus.REFUNDED
    return Transition(changes=changes)


def complete(state: BookingState, command: Complete) -> Transition:
    _require_tutor(state, command.actor, "complete")
    if state.status not in COMPLETABLE_STATUSES:
        raise InvalidStateError("Only confirmed or in-progress sessions can be completed")
    return Transition(changes={"status": BookingStatus.COMPLETED, "session_ended_at": command.now})


def reschedule(state: BookingState, command: Reschedule) -> Transition:
    _require_participant(state, command.actor, "reschedule")
    if state.status not in RESCHEDULABLE_STATUSES:
        raise InvalidStateError("Only pending or confirmed bookings can be rescheduled")

    return Transition(
        changes={
            "session_date": command.new_date,
            "start_minute": command.new_start_minute,
            "end_minute": command.new_end_minute,
            "duration_minutes": command.new_end_minute - command.new_start_minute,
        },
        history={
            "old_date": state.session_date,
            "new_date": command.new_date,
            "old_start_minute": state.start_minute,
            "new_start_minute": command.new_start_minute,
            "reason": command.reason,
            "requested_by": command.actor.user_id,
            "requested_at": command.now,
        },
    )


def submit_feedback(state: BookingState, command: SubmitFeedback) -> Transition:
    if isinstance(command.rating, bool) or not isinstance(command.rating, int) or not 1 <= command.rating <= 5:
        raise ValidationError("Rating must be an integer between 1 and 5")

    actor = command.actor
    if actor.role == UserRole.STUDENT and actor.user_id == state.student_id:
        side = "student"
    elif actor.role == UserRole.TUTOR and actor.user_id == state.tutor_id:
        side = "tutor"
    else:
        raise ForbiddenError("Not authorized to add feedback to this booking")

    if state.status != BookingStatus.COMPLETED:
        raise InvalidStateError("Feedback can only be added after session completion")

    return Transition(changes={
        f"{side}_rating": command.rating,
        f"{side}_comment": command.comment,
        f"{side}_feedback_at": command.now,
    })


def record_attendance(state: BookingState, command: RecordAttendance) -> Transition:
    actor = command.actor
    _require_participant(state, actor, "join")
    if state.status not in ATTENDABLE_STATUSES:
        raise InvalidStateError("Only confirmed sessions can be joined")

    opens_at = state.starts_at - timedelta(minutes=command.early_join_minutes)
    if command.now < opens_at or command.now >= state.ends_at:
        raise InvalidStateError("Session can only be joined during its scheduled time")

    side = "student" if actor.user_id == state.student_id else "tutor"
    changes: Dict[str, Any] = {}
    if getattr(state, f"{side}_joined_at") is None:
        changes[f"{side}_joined_at"] = command.now
    if state.status == BookingStatus.CONFIRMED:
        changes["status"] = BookingStatus.IN_PROGRESS
    return Transition(changes=changes)


def mark_no_show(state: BookingState, command: MarkNoShow) -> Transition:
    if state.status != BookingStatus.CONFIRMED:
        raise InvalidStateError("Only confirmed sessions can be marked as missed")
    if state.student_joined_at is not None or state.tutor_joined_at is not None:
        raise InvalidStateError("Session was attended")
    if command.now < state.ends_at + timedelta(minutes=command.grace_minutes):
        raise InvalidStateError("Session has not ended yet")
    return Transition(changes={"status": BookingStatus.NO_SHOW})


def is_upcoming(state: BookingState, now: datetime) -> bool:
    return state.starts_at > now and state.status not in TERMINAL_STATUSES


def is_overdue(state: BookingState, now: datetime) -> bool:
    return state.ends_at < now and state.status == BookingStatus.CONFIRMED


def apply(booking, transition: Transition) -> None:
    """Write a transition's changes onto a booking row"""
    for name, value in transition.changes.items():
        setattr(booking, name, value)
