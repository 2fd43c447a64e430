from sqlalchemy import Column, String, Enum, Boolean
from sqlalchemy.orm import relationship
import enum

from app.core.database import Base


class UserRole(str, enum.Enum):
    STUDENT = "student"
    TUTOR = "tutor"
    ADMIN = "admin"


class User(Base):
    __tablename__ = "users"

    # Core user fields
    role = Column(Enum(UserRole), default=UserRole.STUDENT, nullable=False)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)

    # Account flags
    is_active = Column(Boolean, default=True, nullable=False)
    is_approved = Column(Boolean, default=True, nullable=False)  # Tutors start unapproved

    # Relationships
    tutor_profile = relationship("TutorProfile", back_populates="user", uselist=False, lazy="selectin")

    @property
    def is_bookable_tutor(self) -> bool:
        return self.role == UserRole.TUTOR and self.is_approved and self.is_active

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
