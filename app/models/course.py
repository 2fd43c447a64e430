from sqlalchemy import Column, String, Text, Boolean, ForeignKey, Uuid

from app.core.database import Base


class Course(Base):
    __tablename__ = "courses"

    # Owning tutor
    tutor_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)

    # Catalog information
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<Course(id={self.id}, tutor_id={self.tutor_id}, title={self.title})>"
