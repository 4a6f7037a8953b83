"""Faculty lifecycle API: removal cascade, class listing and cohort migration."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import ensure_department_scope, require_faculty_and_above, require_hod_and_above
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.core.schemas import ClassInfo
from app.db.session import get_db

from app.api.v1.class_assignments import reassignment
from app.api.v1.class_assignments.resolver import get_active_profile

from . import service
from .schemas import (
    FacultyClassesResponse,
    FacultyRemovalResponse,
    StudentMigrationRequest,
    StudentMigrationResponse,
)

router = APIRouter(prefix="/api/v1/faculty", tags=["faculty"])


def _ensure_self_or_hod(current_user: CurrentUser, faculty_user_id: UUID) -> None:
    if not current_user.is_hod_or_above and current_user.id != faculty_user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")


@router.delete("/{profile_id}", response_model=FacultyRemovalResponse)
async def remove_faculty(
    profile_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_hod_and_above),
):
    profile = await service.get_profile(db, profile_id)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Faculty not found")
    ensure_department_scope(current_user, profile.department)
    try:
        return await service.remove_faculty(db, profile_id, performed_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{faculty_user_id}/classes", response_model=FacultyClassesResponse)
async def get_faculty_classes(
    faculty_user_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_faculty_and_above),
):
    _ensure_self_or_hod(current_user, faculty_user_id)
    result = await service.faculty_classes(db, faculty_user_id)
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Faculty not found")
    ensure_department_scope(current_user, result.department)
    return result


@router.post("/{faculty_user_id}/migrate-students", response_model=StudentMigrationResponse)
async def migrate_students(
    faculty_user_id: UUID,
    payload: StudentMigrationRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_faculty_and_above),
):
    """Move the faculty's own active students from one class into a class they now advise."""
    _ensure_self_or_hod(current_user, faculty_user_id)
    profile = await get_active_profile(db, faculty_user_id)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Faculty not found")
    ensure_department_scope(current_user, profile.department)
    try:
        from_key = payload.from_class.to_key(profile.department)
        to_key = payload.to_class.to_key(profile.department)
        migrated = await reassignment.migrate_students(
            db, from_key, to_key, faculty_user_id, performed_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return StudentMigrationResponse(
        migrated=migrated,
        from_class=ClassInfo.from_key(from_key),
        to_class=ClassInfo.from_key(to_key),
    )
