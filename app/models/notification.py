from sqlalchemy import Column, ForeignKey, Enum, JSON, Uuid
import enum

from app.core.database import Base


class NotificationType(str, enum.Enum):
    BOOKING_REQUESTED = "booking_requested"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_COMPLETED = "booking_completed"
    BOOKING_RESCHEDULED = "booking_rescheduled"
    BOOKING_NO_SHOW = "booking_no_show"
    FEEDBACK_RECEIVED = "feedback_received"


class NotificationDelivery(str, enum.Enum):
    INAPP = "inapp"


class NotificationStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    READ = "read"


class Notification(Base):
    __tablename__ = "notifications"

    # Foreign key to user
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)

    # Notification details
    type = Column(Enum(NotificationType), nullable=False)
    payload = Column(JSON, nullable=False)  # JSON data containing notification content
    delivery = Column(Enum(NotificationDelivery), default=NotificationDelivery.INAPP, nullable=False)
    status = Column(Enum(NotificationStatus), default=NotificationStatus.PENDING, nullable=False)

    def __repr__(self):
        return f"<Notification(user_id={self.user_id}, type={self.type}, delivery={self.delivery}, status={self.status})>"
