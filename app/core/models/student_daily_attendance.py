"""Class attendance roster: one master per class/date; one entry per student on the roster."""

import uuid
from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class ClassAttendance(Base):
    """One row per (class_id, department, attendance_date)."""

    __tablename__ = "class_attendance"
    __table_args__ = (
        UniqueConstraint("class_id", "department", "attendance_date", name="uq_class_attendance_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    class_id = Column(String(64), nullable=False)
    department = Column(String(20), nullable=False)
    attendance_date = Column(Date, nullable=False)
    marked_by = Column(UUID(as_uuid=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    entries = relationship(
        "ClassAttendanceEntry",
        back_populates="class_attendance",
        cascade="all, delete-orphan",
    )


class ClassAttendanceEntry(Base):
    """One row per student per class_attendance."""

    __tablename__ = "class_attendance_entries"
    __table_args__ = (
        UniqueConstraint("class_attendance_id", "student_id", name="uq_class_attendance_entry_student"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    class_attendance_id = Column(
        UUID(as_uuid=True),
        ForeignKey("class_attendance.id", ondelete="CASCADE"),
        nullable=False,
    )
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id"), nullable=False, index=True)
    roll_number = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False)  # Present | Absent
    record_status = Column(String(20), nullable=False, default="active")  # active | inactive
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_by = Column(UUID(as_uuid=True), nullable=True)

    class_attendance = relationship("ClassAttendance", back_populates="entries")
