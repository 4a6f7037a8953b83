"""Class advisor assignment: ONE faculty owns ONE class (batch/year/semester/section) in a department.
Authoritative source of class ownership. Records are never reactivated; re-assignment creates a new row."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class ClassAssignment(Base):
    __tablename__ = "class_assignments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # auth user id of the owning faculty, not the faculty profile id
    faculty_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    class_id = Column(String(64), nullable=False)
    department = Column(String(20), nullable=False)
    batch = Column(String(9), nullable=False)
    year = Column(String(10), nullable=False)
    semester = Column(Integer, nullable=False)
    section = Column(String(1), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    assigned_by = Column(UUID(as_uuid=True), nullable=False)
    assigned_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    deactivated_at = Column(DateTime(timezone=True), nullable=True)
    deactivated_by = Column(UUID(as_uuid=True), nullable=True)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        # At most one active owner per class; last-resort guard under concurrent writers.
        Index(
            "uq_active_assignment_per_class",
            "class_id",
            "department",
            unique=True,
            postgresql_where=active.is_(True),
            sqlite_where=active.is_(True),
        ),
        Index("ix_class_assignment_faculty_active", "faculty_user_id", "active"),
    )

    faculty_user = relationship("User", foreign_keys=[faculty_user_id])
