import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class Student(Base):
    """
    Student enrollment in one class. class_id is the canonical class string, stored alongside the
    decomposed coordinates for query efficiency. faculty_user_id is a cached pointer to the class
    advisor; it is written only by the binding/reassignment services, never trusted as authoritative.
    Removal is soft: status -> inactive, deleted_at set.
    """

    __tablename__ = "students"
    __table_args__ = (
        # Roll number unique within a class among active students.
        Index(
            "uq_active_roll_number_per_class",
            "class_id",
            "department",
            "roll_number",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_students_class_status", "class_id", "department", "status"),
        Index("ix_students_faculty_status", "faculty_user_id", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    roll_number = Column(String(50), nullable=False)
    name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True)
    # Nullable for rows imported before class ids were derived; backfilled by repair tooling.
    class_id = Column(String(64), nullable=True)
    department = Column(String(20), nullable=False)
    batch = Column(String(9), nullable=False)
    year = Column(String(10), nullable=False)
    semester = Column(Integer, nullable=False)
    section = Column(String(1), nullable=False, default="A")
    faculty_user_id = Column(UUID(as_uuid=True), nullable=True)
    status = Column(String(20), nullable=False, default="active")  # active | inactive
    created_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_by = Column(UUID(as_uuid=True), nullable=True)

    user = relationship("User", foreign_keys=[user_id])
