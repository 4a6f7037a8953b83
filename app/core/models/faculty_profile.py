import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class FacultyProfile(Base):
    """
    Faculty profile linked 1:1 to an auth user.
    is_class_advisor/batch/year/semester/section are the legacy single-slot advisor fields;
    they are read only by the creator-fallback repair path.
    """

    __tablename__ = "faculty_profiles"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, unique=True)
    full_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False)
    position = Column(String(50), nullable=True)  # Assistant Professor | Associate Professor | Professor
    department = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="active")  # active | inactive | suspended
    is_class_advisor = Column(Boolean, nullable=False, default=False)
    batch = Column(String(9), nullable=True)
    year = Column(String(10), nullable=True)
    semester = Column(Integer, nullable=True)
    section = Column(String(1), nullable=True)
    created_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    user = relationship("User", foreign_keys=[user_id])
    assigned_classes = relationship(
        "FacultyClassEntry",
        back_populates="faculty",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="FacultyClassEntry.assigned_at",
    )


class FacultyClassEntry(Base):
    """Denormalized copy of a faculty's class assignments ("my classes"). Cache of class_assignments."""

    __tablename__ = "faculty_class_entries"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    faculty_id = Column(
        UUID(as_uuid=True),
        ForeignKey("faculty_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    class_id = Column(String(64), nullable=False, index=True)
    department = Column(String(20), nullable=False)
    batch = Column(String(9), nullable=False)
    year = Column(String(10), nullable=False)
    semester = Column(Integer, nullable=False)
    section = Column(String(1), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    assigned_by = Column(UUID(as_uuid=True), nullable=False)
    assigned_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    deactivated_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    faculty = relationship("FacultyProfile", back_populates="assigned_classes")
