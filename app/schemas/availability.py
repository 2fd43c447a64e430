from pydantic import BaseModel, Field
from typing import Optional, List
import datetime
from decimal import Decimal
import uuid

from app.models.availability import Weekday

TIME_PATTERN = r"^\d{2}:\d{2}$"


class SlotResponse(BaseModel):
    start_time: str = Field(..., description="Slot start (HH:MM)")
    end_time: str = Field(..., description="Slot end (HH:MM)")
    duration: int = Field(..., description="Slot duration in minutes")
    available: bool = True


class TutorAvailabilityResponse(BaseModel):
    tutor_id: uuid.UUID = Field(..., description="Tutor ID")
    tutor_name: str = Field(..., description="Tutor name")
    hourly_rate: Optional[Decimal] = Field(None, description="Current hourly rate")
    date: datetime.date = Field(..., description="Requested date")
    day_of_week: str = Field(..., description="Weekday name of the date")
    available: bool = Field(..., description="Whether the tutor works on this weekday")
    window_start: Optional[str] = None
    window_end: Optional[str] = None
    slot_duration_minutes: int = Field(30, description="Slot duration in minutes")
    available_slots: List[SlotResponse] = Field(default_factory=list)
    total_slots: int = 0
    message: Optional[str] = None


class AvailabilityWindow(BaseModel):
    weekday: Weekday = Field(..., description="Day of the week")
    start_time: str = Field(..., pattern=TIME_PATTERN, description="Window start (HH:MM)")
    end_time: str = Field(..., pattern=TIME_PATTERN, description="Window end (HH:MM, 24:00 allowed)")


class WeeklyAvailabilityRequest(BaseModel):
    windows: List[AvailabilityWindow] = Field(default_factory=list, max_length=7)


class WeeklyAvailabilityResponse(BaseModel):
    tutor_id: uuid.UUID
    windows: List[AvailabilityWindow]
