"""
Audit recorder for class binding operations. Best effort: a failed write is logged and dropped,
never raised, so it cannot block or undo the operation being audited.
Call only after the primary operation has committed or rolled back; this commits its own entry.
"""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.class_key import ClassKey
from app.core.enums import AuditOperation, AuditStatus, ResolutionSource
from app.core.models import FacultyAuditLog

from .schemas import AuditLogResponse

logger = logging.getLogger(__name__)


async def record_audit(
    db: AsyncSession,
    operation: AuditOperation,
    *,
    key: Optional[ClassKey] = None,
    class_id: Optional[str] = None,
    department: Optional[str] = None,
    faculty_user_id: Optional[UUID] = None,
    source: Optional[ResolutionSource] = None,
    performed_by: Optional[UUID] = None,
    status: AuditStatus = AuditStatus.success,
    details: Optional[Dict[str, Any]] = None,
    error_message: Optional[str] = None,
) -> Optional[FacultyAuditLog]:
    """Append one audit entry and commit it."""
    if key is not None:
        class_id = key.class_id
        department = key.department
    entry = FacultyAuditLog(
        operation=operation.value,
        class_id=class_id,
        department=department,
        faculty_user_id=faculty_user_id,
        source=source.value if source else None,
        performed_by=performed_by,
        status=status.value,
        details=jsonable_encoder(details or {}),
        error_message=error_message,
    )
    try:
        db.add(entry)
        await db.commit()
    except SQLAlchemyError:
        logger.exception("Audit write failed for %s on %s", operation.value, class_id)
        await db.rollback()
        return None
    logger.info(
        "audit %s class=%s faculty=%s source=%s status=%s",
        operation.value,
        class_id,
        faculty_user_id,
        entry.source,
        status.value,
    )
    return entry


def _to_response(e: FacultyAuditLog) -> AuditLogResponse:
    return AuditLogResponse(
        id=e.id,
        operation=e.operation,
        class_id=e.class_id,
        department=e.department,
        faculty_user_id=e.faculty_user_id,
        source=e.source,
        performed_by=e.performed_by,
        status=e.status,
        details=e.details or {},
        error_message=e.error_message,
        timestamp=e.timestamp,
    )


async def list_audit_logs(
    db: AsyncSession,
    class_id: Optional[str] = None,
    department: Optional[str] = None,
    faculty_user_id: Optional[UUID] = None,
    operation: Optional[str] = None,
    limit: int = 100,
) -> List[AuditLogResponse]:
    stmt = select(FacultyAuditLog)
    if class_id is not None:
        stmt = stmt.where(FacultyAuditLog.class_id == class_id)
    if department is not None:
        stmt = stmt.where(FacultyAuditLog.department == department)
    if faculty_user_id is not None:
        stmt = stmt.where(FacultyAuditLog.faculty_user_id == faculty_user_id)
    if operation is not None:
        stmt = stmt.where(FacultyAuditLog.operation == operation)
    stmt = stmt.order_by(FacultyAuditLog.timestamp.desc()).limit(limit)
    result = await db.execute(stmt)
    return [_to_response(e) for e in result.scalars().all()]
