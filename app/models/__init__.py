from app.core.database import Base
from .user import User, UserRole
from .tutor_profile import TutorProfile
from .course import Course
from .availability import TutorAvailability, Weekday
from .booking import (
    Booking,
    BookingReschedule,
    BookingStatus,
    PaymentMethod,
    PaymentStatus,
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
)
from .notification import Notification, NotificationType, NotificationDelivery, NotificationStatus

__all__ = [
    "Base",

    # Users and profiles
    "User",
    "UserRole",
    "TutorProfile",
    "Course",

    # Availability and booking
    "TutorAvailability",
    "Weekday",
    "Booking",
    "BookingReschedule",
    "BookingStatus",
    "PaymentMethod",
    "PaymentStatus",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",

    # Notifications
    "Notification",
    "NotificationType",
    "NotificationDelivery",
    "NotificationStatus",
]
