"""
Student creation, bulk ingestion and soft removal.

Every new student is bound to the class's current advisor through the resolver and the binding
is re-validated right before the insert. Soft removal cascades to attendance as best effort.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from fastapi import status
from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.class_key import ClassKey, build_key
from app.core.enums import AuditOperation, AuditStatus, RecordStatus
from app.core.exceptions import BindingValidationFailed, ServiceError
from app.core.models import ClassAttendanceEntry, Student, StudentAttendance
from app.core.schemas import ClassInfo

from app.api.v1.audit.service import record_audit
from app.api.v1.class_assignments import resolver
from app.api.v1.class_assignments.resolver import FacultyBinding

from .schemas import (
    BulkCreateResponse,
    RowFailure,
    StudentCreate,
    StudentRemovalResponse,
    StudentResponse,
    StudentRow,
)

logger = logging.getLogger(__name__)


def key_of(s: Student) -> ClassKey:
    return build_key(s.batch, s.year, s.semester, s.section, s.department)


async def get_student(db: AsyncSession, student_id: UUID) -> Optional[Student]:
    return await db.get(Student, student_id)


async def list_class_students(
    db: AsyncSession,
    key: ClassKey,
    include_inactive: bool = False,
) -> List[StudentResponse]:
    stmt = select(Student).where(
        Student.class_id == key.class_id,
        Student.department == key.department,
    )
    if not include_inactive:
        stmt = stmt.where(Student.status == RecordStatus.active.value)
    result = await db.execute(stmt.order_by(Student.roll_number))
    return [StudentResponse.model_validate(s) for s in result.scalars().all()]


async def _bind_for_write(
    db: AsyncSession,
    key: ClassKey,
    performed_by: UUID,
    require_owner: Optional[UUID],
) -> FacultyBinding:
    """Resolve the owner of key and re-validate it. require_owner restricts writes to that faculty."""
    binding = await resolver.resolve(db, key, performed_by=performed_by)
    if require_owner is not None and binding.faculty_user_id != require_owner:
        raise ServiceError(
            "You are not the class advisor of this class.",
            status.HTTP_403_FORBIDDEN,
        )
    if not await resolver.validate_binding(db, binding.faculty_user_id, key):
        raise BindingValidationFailed(binding.faculty_user_id, key.class_id)
    return binding


async def _existing_roll_numbers(db: AsyncSession, key: ClassKey, roll_numbers: List[str]) -> set:
    if not roll_numbers:
        return set()
    result = await db.execute(
        select(Student.roll_number).where(
            Student.class_id == key.class_id,
            Student.department == key.department,
            Student.status == RecordStatus.active.value,
            Student.roll_number.in_(roll_numbers),
        )
    )
    return {r for r in result.scalars().all()}


def _new_student(row: StudentRow, key: ClassKey, faculty_user_id: UUID, created_by: UUID) -> Student:
    return Student(
        roll_number=row.roll_number.strip(),
        name=row.name.strip(),
        email=row.email,
        class_id=key.class_id,
        department=key.department,
        batch=key.batch,
        year=key.year.value,
        semester=key.semester,
        section=key.section.value,
        faculty_user_id=faculty_user_id,
        status=RecordStatus.active.value,
        created_by=created_by,
    )


async def create_student(
    db: AsyncSession,
    payload: StudentCreate,
    created_by: UUID,
    *,
    default_department: Optional[str] = None,
    require_owner: Optional[UUID] = None,
) -> StudentResponse:
    key = payload.to_key(default_department)
    binding = await _bind_for_write(db, key, created_by, require_owner)

    row = StudentRow(roll_number=payload.roll_number, name=payload.name, email=payload.email)
    if await _existing_roll_numbers(db, key, [row.roll_number.strip()]):
        raise ServiceError(
            f"Roll number {row.roll_number} already exists in {key.class_id}.",
            status.HTTP_409_CONFLICT,
        )
    obj = _new_student(row, key, binding.faculty_user_id, created_by)
    try:
        db.add(obj)
        await db.commit()
        await db.refresh(obj)
    except IntegrityError:
        await db.rollback()
        raise ServiceError(
            f"Roll number {row.roll_number} already exists in {key.class_id}.",
            status.HTTP_409_CONFLICT,
        )
    await record_audit(
        db,
        AuditOperation.MANUAL_CREATE,
        key=key,
        faculty_user_id=binding.faculty_user_id,
        source=binding.source,
        performed_by=created_by,
        details={"student_id": obj.id, "roll_number": obj.roll_number},
    )
    return StudentResponse.model_validate(obj)


def _validate_rows(rows: List[Dict[str, Any]]) -> Tuple[List[Tuple[int, StudentRow]], List[RowFailure]]:
    valid: List[Tuple[int, StudentRow]] = []
    failures: List[RowFailure] = []
    seen = set()
    for index, raw in enumerate(rows, start=1):
        roll = str(raw.get("roll_number") or "").strip() or None
        try:
            # Spreadsheet cells arrive as numbers.
            row = StudentRow.model_validate({**raw, "roll_number": roll or ""})
        except ValidationError as e:
            failures.append(RowFailure(row=index, roll_number=roll, error=e.errors()[0]["msg"]))
            continue
        roll = row.roll_number.strip()
        if roll in seen:
            failures.append(RowFailure(row=index, roll_number=roll, error="Duplicate roll number in upload"))
            continue
        seen.add(roll)
        valid.append((index, row))
    return valid, failures


async def bulk_create_students(
    db: AsyncSession,
    coordinates: Dict[str, Any],
    rows: List[Dict[str, Any]],
    created_by: UUID,
    *,
    default_department: Optional[str] = None,
    require_owner: Optional[UUID] = None,
) -> BulkCreateResponse:
    """Insert already-normalized rows into one class. Bad rows are reported, good rows are
    inserted in a single commit. Resolution or binding failure rejects the whole upload."""
    key = build_key(
        coordinates.get("batch"),
        coordinates.get("year"),
        coordinates.get("semester"),
        coordinates.get("section"),
        coordinates.get("department") or default_department,
    )
    binding = await _bind_for_write(db, key, created_by, require_owner)

    valid, failures = _validate_rows(rows)
    taken = await _existing_roll_numbers(db, key, [r.roll_number.strip() for _, r in valid])
    to_insert: List[Student] = []
    for index, row in valid:
        if row.roll_number.strip() in taken:
            failures.append(
                RowFailure(row=index, roll_number=row.roll_number, error=f"Roll number already exists in {key.class_id}")
            )
            continue
        to_insert.append(_new_student(row, key, binding.faculty_user_id, created_by))

    if to_insert:
        try:
            db.add_all(to_insert)
            await db.commit()
        except IntegrityError:
            await db.rollback()
            await record_audit(
                db,
                AuditOperation.BULK_UPLOAD,
                key=key,
                faculty_user_id=binding.faculty_user_id,
                source=binding.source,
                performed_by=created_by,
                status=AuditStatus.failed,
                details={"total_rows": len(rows)},
                error_message="roll number conflict",
            )
            raise ServiceError(
                f"Roll number conflict while uploading into {key.class_id}; nothing was inserted.",
                status.HTTP_409_CONFLICT,
            )

    failures.sort(key=lambda f: f.row)
    outcome = AuditStatus.success
    if failures:
        outcome = AuditStatus.partial_success if to_insert else AuditStatus.failed
    logger.info(
        "Bulk upload into %s: %d created, %d failed", key.class_id, len(to_insert), len(failures)
    )
    await record_audit(
        db,
        AuditOperation.BULK_UPLOAD,
        key=key,
        faculty_user_id=binding.faculty_user_id,
        source=binding.source,
        performed_by=created_by,
        status=outcome,
        details={
            "total_rows": len(rows),
            "created": len(to_insert),
            "failures": [f.model_dump() for f in failures],
        },
    )
    return BulkCreateResponse(
        class_info=ClassInfo.from_key(key),
        faculty_user_id=binding.faculty_user_id,
        source=binding.source.value,
        created=[StudentResponse.model_validate(s) for s in to_insert],
        failures=failures,
        total_rows=len(rows),
    )


async def _cascade_attendance(db: AsyncSession, student_id: UUID, performed_by: UUID, now: datetime) -> Tuple[int, int]:
    records = await db.execute(
        update(StudentAttendance)
        .where(
            StudentAttendance.student_id == student_id,
            StudentAttendance.record_status == RecordStatus.active.value,
        )
        .values(record_status=RecordStatus.inactive.value, deleted_at=now, deleted_by=performed_by)
        .execution_options(synchronize_session=False)
    )
    entries = await db.execute(
        update(ClassAttendanceEntry)
        .where(
            ClassAttendanceEntry.student_id == student_id,
            ClassAttendanceEntry.record_status == RecordStatus.active.value,
        )
        .values(record_status=RecordStatus.inactive.value, deleted_at=now, deleted_by=performed_by)
        .execution_options(synchronize_session=False)
    )
    return records.rowcount or 0, entries.rowcount or 0


async def soft_remove_student(
    db: AsyncSession,
    student_id: UUID,
    performed_by: UUID,
) -> Optional[StudentRemovalResponse]:
    """Mark the student inactive, then its attendance. Attendance failures are logged, not raised."""
    student = await get_student(db, student_id)
    if student is None:
        return None
    if student.status != RecordStatus.active.value:
        raise ServiceError("Student is already removed.", status.HTTP_400_BAD_REQUEST)

    now = datetime.utcnow()
    student.status = RecordStatus.inactive.value
    student.deleted_at = now
    student.deleted_by = performed_by
    await db.commit()

    # A failed cascade rolls back and expires the student; keep what the audit needs.
    class_id, department, faculty_user_id = student.class_id, student.department, student.faculty_user_id
    response = StudentRemovalResponse(student_id=student_id, status=student.status)
    try:
        response.attendance_records_updated, response.roster_entries_updated = await _cascade_attendance(
            db, student_id, performed_by, now
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("Attendance cascade failed for removed student %s", student_id)
        response.cascade_errors.append(type(e).__name__)

    await record_audit(
        db,
        AuditOperation.STUDENT_REMOVAL,
        class_id=class_id,
        department=department,
        faculty_user_id=faculty_user_id,
        performed_by=performed_by,
        status=AuditStatus.partial_success if response.cascade_errors else AuditStatus.success,
        details=response.model_dump(),
    )
    return response
