"""
Append-only log of class binding activity: resolutions, reassignments, cascades and repairs.
source records which view answered a resolution so drift between views stays observable.
"""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID

from app.db.session import Base


class FacultyAuditLog(Base):
    __tablename__ = "faculty_audit_logs"
    __table_args__ = (
        Index("ix_faculty_audit_class", "class_id", "timestamp"),
        Index("ix_faculty_audit_faculty", "faculty_user_id", "timestamp"),
        Index("ix_faculty_audit_operation", "operation", "timestamp"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    operation = Column(String(50), nullable=False)
    class_id = Column(String(64), nullable=True)
    department = Column(String(20), nullable=True)
    faculty_user_id = Column(UUID(as_uuid=True), nullable=True)
    source = Column(String(30), nullable=True)
    performed_by = Column(UUID(as_uuid=True), nullable=True)
    status = Column(String(20), nullable=False, default="success")
    details = Column(JSON, nullable=False, default=dict)
    error_message = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
