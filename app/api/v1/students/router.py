"""Student API. Faculty write only into classes they advise; HOD and above within their department.
Repair endpoints are admin only."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import ensure_department_scope, require_admin, require_faculty_and_above
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.core.schemas import ClassCoordinates
from app.db.session import get_db

from app.api.v1.class_assignments.resolver import validate_binding

from . import repair, service
from .schemas import (
    BackfillReport,
    BindingRepairReport,
    BulkCreateResponse,
    OrphanReport,
    StudentBulkCreate,
    StudentCreate,
    StudentRemovalResponse,
    StudentResponse,
)

router = APIRouter(prefix="/api/v1/students", tags=["students"])


def _owner_filter(current_user: CurrentUser) -> Optional[UUID]:
    """Faculty may only write into their own classes."""
    return None if current_user.is_hod_or_above else current_user.id


@router.post("", response_model=StudentResponse, status_code=status.HTTP_201_CREATED)
async def create_student(
    payload: StudentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_faculty_and_above),
):
    try:
        ensure_department_scope(current_user, payload.to_key(current_user.department).department)
        return await service.create_student(
            db,
            payload,
            current_user.id,
            default_department=current_user.department,
            require_owner=_owner_filter(current_user),
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/bulk", response_model=BulkCreateResponse, status_code=status.HTTP_201_CREATED)
async def bulk_create_students(
    payload: StudentBulkCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_faculty_and_above),
):
    try:
        ensure_department_scope(current_user, payload.to_key(current_user.department).department)
        return await service.bulk_create_students(
            db,
            payload.model_dump(exclude={"rows"}),
            payload.rows,
            current_user.id,
            default_department=current_user.department,
            require_owner=_owner_filter(current_user),
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("", response_model=List[StudentResponse])
async def list_class_students(
    batch: str = Query(...),
    year: str = Query(...),
    semester: str = Query(...),
    section: str = Query(...),
    department: Optional[str] = Query(None),
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_faculty_and_above),
):
    try:
        key = ClassCoordinates(
            batch=batch, year=year, semester=semester, section=section, department=department
        ).to_key(current_user.department)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    ensure_department_scope(current_user, key.department)
    if not current_user.is_hod_or_above and not await validate_binding(db, current_user.id, key):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You are not the advisor of this class")
    return await service.list_class_students(db, key, include_inactive=include_inactive)


@router.delete("/{student_id}", response_model=StudentRemovalResponse)
async def remove_student(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_faculty_and_above),
):
    student = await service.get_student(db, student_id)
    if student is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
    ensure_department_scope(current_user, student.department)
    try:
        if not current_user.is_hod_or_above:
            if not await validate_binding(db, current_user.id, service.key_of(student)):
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail="You are not authorized to delete this student",
                )
        return await service.soft_remove_student(db, student_id, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/maintenance/backfill-class-ids", response_model=BackfillReport)
async def backfill_class_ids(
    department: Optional[str] = Query(None),
    dry_run: bool = Query(True),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    return await repair.backfill_student_class_ids(db, department=department, dry_run=dry_run)


@router.post("/maintenance/repair-bindings", response_model=BindingRepairReport)
async def repair_bindings(
    department: Optional[str] = Query(None),
    dry_run: bool = Query(True),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    return await repair.repair_student_bindings(
        db, department=department, dry_run=dry_run, performed_by=current_user.id
    )


@router.get("/maintenance/orphans", response_model=OrphanReport)
async def detect_orphans(
    department: Optional[str] = Query(None),
    strict: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    try:
        return await repair.detect_orphans(db, department=department, strict=strict)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
