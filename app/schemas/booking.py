from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date, datetime
from decimal import Decimal
import uuid

from app.core.clock import format_time_of_day
from app.models.booking import Booking, BookingStatus, PaymentMethod, PaymentStatus
from app.services.booking_lifecycle import BookingState, is_overdue, is_upcoming

TIME_PATTERN = r"^\d{2}:\d{2}$"


class BookingCreateRequest(BaseModel):
    tutor_id: uuid.UUID = Field(..., description="Tutor ID")
    course_id: uuid.UUID = Field(..., description="Course ID, must belong to the tutor")
    session_date: date = Field(..., description="Session date (YYYY-MM-DD)")
    start_time: str = Field(..., pattern=TIME_PATTERN, description="Start time (HH:MM)")
    end_time: str = Field(..., pattern=TIME_PATTERN, description="End time (HH:MM)")
    duration: int = Field(..., gt=0, description="Duration in minutes")
    payment_method: PaymentMethod = Field(PaymentMethod.CASH, description="Recorded payment method")
    notes: Optional[str] = Field(None, max_length=1000, description="Special instructions from the student")
    session_objectives: List[str] = Field(default_factory=list, description="What the student wants to learn")


class BookingCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500, description="Cancellation reason")


class BookingRescheduleRequest(BaseModel):
    new_date: date = Field(..., description="New session date")
    new_start_time: str = Field(..., pattern=TIME_PATTERN, description="New start time (HH:MM)")
    new_end_time: str = Field(..., pattern=TIME_PATTERN, description="New end time (HH:MM)")
    reason: Optional[str] = Field(None, max_length=500, description="Reason for rescheduling")


class BookingFeedbackRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5, description="Rating from 1 to 5")
    comment: Optional[str] = Field(None, max_length=1000, description="Free-text comment")


class FeedbackRecord(BaseModel):
    rating: int
    comment: Optional[str] = None
    submitted_at: Optional[datetime] = None


class FeedbackResponse(BaseModel):
    student: Optional[FeedbackRecord] = Field(None, description="Student's rating of the session")
    tutor: Optional[FeedbackRecord] = Field(None, description="Tutor's rating of the student")


class AttendanceResponse(BaseModel):
    student_joined_at: Optional[datetime] = None
    tutor_joined_at: Optional[datetime] = None
    session_ended_at: Optional[datetime] = None


class RescheduleRecordResponse(BaseModel):
    old_date: date
    new_date: date
    old_start_time: str
    new_start_time: str
    reason: Optional[str] = None
    requested_by: uuid.UUID
    requested_at: datetime


class BookingResponse(BaseModel):
    id: uuid.UUID = Field(..., description="Booking ID")
    student_id: uuid.UUID = Field(..., description="Student ID")
    tutor_id: uuid.UUID = Field(..., description="Tutor ID")
    course_id: uuid.UUID = Field(..., description="Course ID")
    session_date: date = Field(..., description="Session date")
    start_time: str = Field(..., description="Session start time (HH:MM)")
    end_time: str = Field(..., description="Session end time (HH:MM)")
    duration: int = Field(..., description="Duration in minutes")
    total_amount: Decimal = Field(..., description="Price fixed at booking time")
    currency: str
    status: BookingStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    meeting_link: Optional[str] = None
    notes: Optional[str] = None
    session_objectives: List[str] = Field(default_factory=list)
    feedback: FeedbackResponse
    attendance: AttendanceResponse
    reschedule_history: List[RescheduleRecordResponse] = Field(default_factory=list)
    cancellation_reason: Optional[str] = None
    refund_amount: Decimal = Decimal("0")
    is_upcoming: bool
    is_overdue: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_booking(cls, booking: Booking, now: datetime) -> "BookingResponse":
        state = BookingState.from_booking(booking)
        return cls(
            id=booking.id,
            student_id=booking.student_id,
            tutor_id=booking.tutor_id,
            course_id=booking.course_id,
            session_date=booking.session_date,
            start_time=format_time_of_day(booking.start_minute),
            end_time=format_time_of_day(booking.end_minute),
            duration=booking.duration_minutes,
            total_amount=booking.total_amount,
            currency=booking.currency,
            status=booking.status,
            payment_status=booking.payment_status,
            payment_method=booking.payment_method,
            meeting_link=booking.meeting_link,
            notes=booking.notes,
            session_objectives=booking.session_objectives or [],
            feedback=FeedbackResponse(
                student=_feedback(booking.student_rating, booking.student_comment, booking.student_feedback_at),
                tutor=_feedback(booking.tutor_rating, booking.tutor_comment, booking.tutor_feedback_at),
            ),
            attendance=AttendanceResponse(
                student_joined_at=booking.student_joined_at,
                tutor_joined_at=booking.tutor_joined_at,
                session_ended_at=booking.session_ended_at,
            ),
            reschedule_history=[
                RescheduleRecordResponse(
                    old_date=record.old_date,
                    new_date=record.new_date,
                    old_start_time=format_time_of_day(record.old_start_minute),
                    new_start_time=format_time_of_day(record.new_start_minute),
                    reason=record.reason,
                    requested_by=record.requested_by,
                    requested_at=record.requested_at,
                )
                for record in booking.reschedule_history
            ],
            cancellation_reason=booking.cancellation_reason,
            refund_amount=booking.refund_amount or Decimal("0"),
            is_upcoming=is_upcoming(state, now),
            is_overdue=is_overdue(state, now),
            created_at=booking.created_at,
            updated_at=booking.updated_at,
        )


def _feedback(rating: Optional[int], comment: Optional[str], submitted_at: Optional[datetime]) -> Optional[FeedbackRecord]:
    if rating is None:
        return None
    return FeedbackRecord(rating=rating, comment=comment, submitted_at=submitted_at)


class BookingCancelResponse(BaseModel):
    message: str = "Booking cancelled successfully"
    refund_amount: Decimal
    booking: BookingResponse


class BookingListResponse(BaseModel):
    bookings: List[BookingResponse]
    total_bookings: int
    has_more: bool
