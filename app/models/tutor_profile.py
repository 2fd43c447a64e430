from sqlalchemy import Column, String, Text, Numeric, ForeignKey, Uuid
from sqlalchemy.orm import relationship

from app.core.database import Base


class TutorProfile(Base):
    __tablename__ = "tutor_profiles"

    # Foreign key to user
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, unique=True)

    # Profile information
    bio = Column(Text, nullable=True)
    hourly_rate = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=True)  # Falls back to the platform currency

    # Meeting settings
    meeting_link = Column(String, nullable=True)  # Default meeting link (Google Meet, Zoom, etc.)

    # Relationships
    user = relationship("User", back_populates="tutor_profile")

    def __repr__(self):
        return f"<TutorProfile(user_id={self.user_id}, hourly_rate={self.hourly_rate})>"
