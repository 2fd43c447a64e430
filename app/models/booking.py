from sqlalchemy import (
    Column, String, Date, DateTime, Integer, Numeric, ForeignKey, Text, Enum, JSON, CheckConstraint, Index, Uuid
)
from sqlalchemy.orm import relationship
import enum

from app.core.database import Base


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


# Statuses that hold their interval: hidden from the slot list and blocking at commit time
ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS)

TERMINAL_STATUSES = (BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW)


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    BKASH = "bkash"
    NAGAD = "nagad"
    ROCKET = "rocket"
    BANK_TRANSFER = "bank_transfer"


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("start_minute < end_minute", name="ck_booking_ordered"),
        CheckConstraint("duration_minutes = end_minute - start_minute", name="ck_booking_duration"),
        Index("ix_bookings_tutor_date_status", "tutor_id", "session_date", "status"),
        Index("ix_bookings_student_date", "student_id", "session_date"),
    )

    # Participants and catalog
    student_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    tutor_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    course_id = Column(Uuid(as_uuid=True), ForeignKey("courses.id"), nullable=False)

    # Time information, minutes since midnight in the schedule timezone
    session_date = Column(Date, nullable=False)
    start_minute = Column(Integer, nullable=False)
    end_minute = Column(Integer, nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    # Status and payment
    status = Column(Enum(BookingStatus), default=BookingStatus.PENDING, nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)  # Snapshot at creation
    currency = Column(String(3), nullable=False)
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    payment_method = Column(Enum(PaymentMethod), default=PaymentMethod.CASH, nullable=False)

    # Meeting details
    meeting_link = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    session_objectives = Column(JSON, nullable=False, default=list)

    # Feedback, one slot per side
    student_rating = Column(Integer, nullable=True)
    student_comment = Column(Text, nullable=True)
    student_feedback_at = Column(DateTime(timezone=True), nullable=True)
    tutor_rating = Column(Integer, nullable=True)  # Tutor's rating of the student
    tutor_comment = Column(Text, nullable=True)
    tutor_feedback_at = Column(DateTime(timezone=True), nullable=True)

    # Attendance
    student_joined_at = Column(DateTime(timezone=True), nullable=True)
    tutor_joined_at = Column(DateTime(timezone=True), nullable=True)
    session_ended_at = Column(DateTime(timezone=True), nullable=True)

    # Cancellation
    cancellation_reason = Column(Text, nullable=True)
    cancelled_by = Column(Uuid(as_uuid=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    refund_amount = Column(Numeric(12, 2), nullable=False, default=0)

    # Optimistic concurrency
    version = Column(Integer, nullable=False)

    # Relationships
    reschedule_history = relationship(
        "BookingReschedule",
        order_by="BookingReschedule.requested_at",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<Booking(student_id={self.student_id}, tutor_id={self.tutor_id}, session_date={self.session_date}, status={self.status})>"


class BookingReschedule(Base):
    """Append-only record of one reschedule; never updated"""
    __tablename__ = "booking_reschedules"

    booking_id = Column(Uuid(as_uuid=True), ForeignKey("bookings.id"), nullable=False, index=True)

    old_date = Column(Date, nullable=False)
    new_date = Column(Date, nullable=False)
    old_start_minute = Column(Integer, nullable=False)
    new_start_minute = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)
    requested_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    requested_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<BookingReschedule(booking_id={self.booking_id}, old_date={self.old_date}, new_date={self.new_date})>"
