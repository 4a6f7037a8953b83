"""Class advisor assignment API. One active advisor per class.
RBAC: HOD/principal/admin write within their department; faculty read their own assignments."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import ensure_department_scope, require_faculty_and_above, require_hod_and_above
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.core.schemas import ClassCoordinates, ClassInfo
from app.db.session import get_db

from app.api.v1.faculty import service as faculty_service

from . import reassignment, resolver
from . import service
from .schemas import (
    AdvisorAvailabilityResponse,
    AssignmentRemovalResponse,
    AvailableClassesResponse,
    ClassAssignmentCreate,
    ClassAssignmentResponse,
    CurrentAdvisorResponse,
    DepartmentAssignmentsResponse,
    ReassignmentResponse,
)

router = APIRouter(prefix="/api/v1/class-assignments", tags=["class-assignments"])


def _department_of(current_user: CurrentUser, department: Optional[str]) -> str:
    dept = department or current_user.department
    if not dept:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Department is required")
    return dept


@router.post(
    "",
    response_model=ReassignmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_class_advisor(
    payload: ClassAssignmentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_hod_and_above),
):
    """Assign a faculty as advisor of a class, moving them off any class they advised before."""
    try:
        key = payload.to_key(current_user.department)
        ensure_department_scope(current_user, key.department)
        result = await reassignment.reassign_class(
            db,
            payload.faculty_user_id,
            key,
            performed_by=current_user.id,
            notes=payload.notes,
            replace_existing=payload.replace_existing,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ReassignmentResponse(
        assignment=service.to_response(result.assignment),
        class_info=ClassInfo.from_key(result.key),
        previous_assignments=result.previous_assignments,
        students_updated=result.students_updated,
    )


@router.post("/check-availability", response_model=AdvisorAvailabilityResponse)
async def check_advisor_availability(
    payload: ClassCoordinates,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_hod_and_above),
):
    try:
        key = payload.to_key(current_user.department)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    ensure_department_scope(current_user, key.department)
    binding = await resolver.current_advisor(db, key)
    existing = None
    if binding is not None:
        existing = {
            "faculty_user_id": binding.faculty_user_id,
            "name": binding.faculty_profile.full_name,
            "email": binding.faculty_profile.email,
            "source": binding.source.value,
        }
    return AdvisorAvailabilityResponse(
        available=binding is None,
        class_info=ClassInfo.from_key(key),
        existing_advisor=existing,
    )


@router.get("/current", response_model=CurrentAdvisorResponse)
async def get_current_advisor(
    batch: str = Query(...),
    year: str = Query(...),
    semester: str = Query(...),
    section: str = Query(...),
    department: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_hod_and_above),
):
    try:
        key = ClassCoordinates(
            batch=batch, year=year, semester=semester, section=section, department=department
        ).to_key(current_user.department)
        ensure_department_scope(current_user, key.department)
        binding = await resolver.resolve(db, key, performed_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return CurrentAdvisorResponse(
        class_info=ClassInfo.from_key(key),
        faculty_user_id=binding.faculty_user_id,
        faculty_profile_id=binding.faculty_profile.id,
        faculty_name=binding.faculty_profile.full_name,
        source=binding.source.value,
        assignment_id=binding.assignment_id,
    )


@router.get("/faculty/{faculty_user_id}", response_model=List[ClassAssignmentResponse])
async def list_faculty_assignments(
    faculty_user_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_faculty_and_above),
):
    """Active assignments of a faculty. Faculty may only read their own."""
    if not current_user.is_hod_or_above and current_user.id != faculty_user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    records = await service.find_active_by_faculty(db, faculty_user_id)
    for r in records:
        ensure_department_scope(current_user, r.department)
    return [service.to_response(r) for r in records]


@router.get("/department", response_model=DepartmentAssignmentsResponse)
async def list_department_assignments(
    department: Optional[str] = Query(None),
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_hod_and_above),
):
    dept = _department_of(current_user, department)
    ensure_department_scope(current_user, dept)
    return await service.department_assignments(db, dept, active_only=active_only)


@router.get("/available-classes", response_model=AvailableClassesResponse)
async def list_available_classes(
    department: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_hod_and_above),
):
    dept = _department_of(current_user, department)
    ensure_department_scope(current_user, dept)
    try:
        return await service.available_classes(db, dept)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/{assignment_id}/deactivate", response_model=ClassAssignmentResponse)
async def release_assignment(
    assignment_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_hod_and_above),
):
    record = await service.get_assignment(db, assignment_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Class assignment not found")
    ensure_department_scope(current_user, record.department)
    try:
        record = await reassignment.release_assignment(db, assignment_id, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Class assignment not found")
    return service.to_response(record)


@router.get("/{assignment_id}", response_model=ClassAssignmentResponse)
async def get_assignment(
    assignment_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_faculty_and_above),
):
    record = await service.get_assignment(db, assignment_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Class assignment not found")
    if not current_user.is_hod_or_above and record.faculty_user_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    ensure_department_scope(current_user, record.department)
    return service.to_response(record)


@router.delete("/{assignment_id}", response_model=AssignmentRemovalResponse)
async def remove_assignment(
    assignment_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_hod_and_above),
):
    """Hard delete. Use the deactivate route to end an assignment while keeping its history."""
    record = await service.get_assignment(db, assignment_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Class assignment not found")
    ensure_department_scope(current_user, record.department)
    try:
        return await faculty_service.remove_assignment(db, assignment_id, performed_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
