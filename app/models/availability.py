from sqlalchemy import Column, Integer, Enum, ForeignKey, CheckConstraint, UniqueConstraint, Uuid
import enum

from app.core.database import Base


class Weekday(str, enum.Enum):
    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"
    SUNDAY = "Sunday"


class TutorAvailability(Base):
    """Recurring weekly window in which a tutor accepts sessions"""
    __tablename__ = "tutor_availability"
    __table_args__ = (
        CheckConstraint("start_minute >= 0 AND end_minute <= 1440", name="ck_availability_day_bounds"),
        CheckConstraint("start_minute < end_minute", name="ck_availability_ordered"),
        UniqueConstraint("tutor_id", "weekday", name="uq_availability_tutor_weekday"),
    )

    # Foreign key to tutor
    tutor_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)

    # Window, minutes since midnight
    weekday = Column(Enum(Weekday), nullable=False)
    start_minute = Column(Integer, nullable=False)
    end_minute = Column(Integer, nullable=False)

    def __repr__(self):
        return f"<TutorAvailability(tutor_id={self.tutor_id}, weekday={self.weekday}, start={self.start_minute}, end={self.end_minute})>"
