import uuid
from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class StudentAttendance(Base):
    """Per-date attendance: one row per student per day. Soft-deleted with the student."""

    __tablename__ = "student_attendance"
    __table_args__ = (
        UniqueConstraint("student_id", "attendance_date", name="uq_student_attendance_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id"), nullable=False, index=True)
    faculty_user_id = Column(UUID(as_uuid=True), nullable=False)
    attendance_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default="Present")  # Present | Absent
    reason = Column(Text, nullable=True)
    record_status = Column(String(20), nullable=False, default="active")  # active | inactive
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    student = relationship("Student", foreign_keys=[student_id])
