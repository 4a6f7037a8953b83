"""Audit log API. HOD and above; HOD sees own department only."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import require_hod_and_above
from app.auth.schemas import CurrentUser
from app.db.session import get_db

from . import service
from .schemas import AuditLogResponse

router = APIRouter(prefix="/api/v1/audit-logs", tags=["audit"])


@router.get("", response_model=List[AuditLogResponse])
async def list_audit_logs(
    class_id: Optional[str] = Query(None, description="Canonical class id"),
    faculty_user_id: Optional[UUID] = Query(None),
    operation: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_hod_and_above),
):
    department = None if current_user.is_admin else current_user.department
    return await service.list_audit_logs(
        db,
        class_id=class_id,
        department=department,
        faculty_user_id=faculty_user_id,
        operation=operation,
        limit=limit,
    )
