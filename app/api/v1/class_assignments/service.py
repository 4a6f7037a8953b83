"""Class assignment store. At most one active assignment per class (class_id, department).
Authoritative for class ownership; faculty_class_entries and students.faculty_user_id are caches of it.
Mutations run under a per-class lock, with the partial unique index as the last-resort guard."""

import asyncio
import logging
import weakref
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.class_key import YEAR_SEMESTERS, ClassKey, build_key
from app.core.enums import SectionCode
from app.core.exceptions import ClassAlreadyAssigned, ConcurrentAssignmentConflict, ServiceError
from app.core.models import ClassAssignment
from app.core.schemas import ClassInfo

from .schemas import (
    AvailableClassesResponse,
    ClassAssignmentResponse,
    ClassGroup,
    DepartmentAssignmentsResponse,
)

logger = logging.getLogger(__name__)

_class_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def _lock_id(key: ClassKey) -> str:
    return f"{key.department}:{key.class_id}"


@asynccontextmanager
async def class_key_lock(*keys: ClassKey) -> AsyncIterator[None]:
    """Serialize writers per class. Several keys are taken in sorted order."""
    async with AsyncExitStack() as stack:
        for lock_id in sorted({_lock_id(k) for k in keys}):
            lock = _class_locks.get(lock_id)
            if lock is None:
                lock = asyncio.Lock()
                _class_locks[lock_id] = lock
            await stack.enter_async_context(lock)
        yield


def key_of(a: ClassAssignment) -> ClassKey:
    return build_key(a.batch, a.year, a.semester, a.section, a.department)


def to_response(a: ClassAssignment) -> ClassAssignmentResponse:
    return ClassAssignmentResponse(
        id=a.id,
        faculty_user_id=a.faculty_user_id,
        class_id=a.class_id,
        department=a.department,
        batch=a.batch,
        year=a.year,
        semester=a.semester,
        section=a.section,
        active=a.active,
        assigned_by=a.assigned_by,
        assigned_at=a.assigned_at,
        deactivated_at=a.deactivated_at,
        notes=a.notes,
        class_display=f"{a.year} | Semester {a.semester} | Section {a.section}",
    )


def snapshot(a: ClassAssignment) -> Dict[str, object]:
    """Coordinates of an assignment for response payloads and audit details."""
    return {
        "assignment_id": a.id,
        "faculty_user_id": a.faculty_user_id,
        "class_id": a.class_id,
        "batch": a.batch,
        "year": a.year,
        "semester": a.semester,
        "section": a.section,
        "department": a.department,
    }


async def get_assignment(db: AsyncSession, assignment_id: UUID) -> Optional[ClassAssignment]:
    return await db.get(ClassAssignment, assignment_id)


async def find_active_by_class_key(db: AsyncSession, key: ClassKey) -> Optional[ClassAssignment]:
    result = await db.execute(
        select(ClassAssignment).where(
            ClassAssignment.class_id == key.class_id,
            ClassAssignment.department == key.department,
            ClassAssignment.active.is_(True),
        )
    )
    return result.scalar_one_or_none()


async def find_active_by_faculty(db: AsyncSession, faculty_user_id: UUID) -> List[ClassAssignment]:
    result = await db.execute(
        select(ClassAssignment)
        .where(
            ClassAssignment.faculty_user_id == faculty_user_id,
            ClassAssignment.active.is_(True),
        )
        .order_by(ClassAssignment.assigned_at.desc())
    )
    return list(result.scalars().all())


async def find_all_by_faculty(db: AsyncSession, faculty_user_id: UUID) -> List[ClassAssignment]:
    result = await db.execute(
        select(ClassAssignment).where(ClassAssignment.faculty_user_id == faculty_user_id)
    )
    return list(result.scalars().all())


async def list_department_assignments(
    db: AsyncSession,
    department: str,
    active_only: bool = True,
) -> List[ClassAssignment]:
    stmt = select(ClassAssignment).where(ClassAssignment.department == department)
    if active_only:
        stmt = stmt.where(ClassAssignment.active.is_(True))
    stmt = stmt.order_by(ClassAssignment.assigned_at.desc())
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def insert_active(
    db: AsyncSession,
    faculty_user_id: UUID,
    key: ClassKey,
    assigned_by: UUID,
    *,
    notes: Optional[str] = None,
    commit: bool = True,
) -> ClassAssignment:
    """createActive without taking the class lock. Caller must hold class_key_lock(key).

    With commit=False the row is only flushed, and any conflict rolls back the caller's whole
    transaction before raising.
    """
    existing = await find_active_by_class_key(db, key)
    if existing is not None:
        if existing.faculty_user_id == faculty_user_id:
            return existing
        holder_id = existing.faculty_user_id
        if not commit:
            await db.rollback()
        raise ClassAlreadyAssigned(key.class_id, holder_id)

    obj = ClassAssignment(
        faculty_user_id=faculty_user_id,
        class_id=key.class_id,
        department=key.department,
        batch=key.batch,
        year=key.year.value,
        semester=key.semester,
        section=key.section.value,
        active=True,
        assigned_by=assigned_by,
        assigned_at=datetime.utcnow(),
        notes=notes,
    )
    try:
        db.add(obj)
        if commit:
            await db.commit()
            await db.refresh(obj)
        else:
            await db.flush()
    except IntegrityError:
        await db.rollback()
        # Another writer committed first (other process, or outside the lock).
        holder = await find_active_by_class_key(db, key)
        logger.warning("Active assignment race on %s; holder=%s", key.class_id, holder and holder.faculty_user_id)
        if holder is None:
            raise ConcurrentAssignmentConflict(key.class_id)
        if holder.faculty_user_id != faculty_user_id:
            raise ClassAlreadyAssigned(key.class_id, holder.faculty_user_id)
        if not commit:
            # The caller's earlier writes were rolled back with the failed insert.
            raise ConcurrentAssignmentConflict(key.class_id)
        return holder
    logger.info("Created active assignment %s: %s -> %s", obj.id, key.class_id, faculty_user_id)
    return obj


async def create_active(
    db: AsyncSession,
    faculty_user_id: UUID,
    key: ClassKey,
    assigned_by: UUID,
    *,
    notes: Optional[str] = None,
) -> ClassAssignment:
    """Create the active assignment for key. Returns the existing record when the same faculty
    already holds it; raises ClassAlreadyAssigned when another faculty does."""
    async with class_key_lock(key):
        return await insert_active(db, faculty_user_id, key, assigned_by, notes=notes)


def mark_inactive(a: ClassAssignment, by: Optional[UUID]) -> bool:
    """Flip active -> inactive in memory. False when already inactive."""
    if not a.active:
        return False
    a.active = False
    a.deactivated_at = datetime.utcnow()
    a.deactivated_by = by
    return True


async def deactivate(
    db: AsyncSession,
    assignment_id: UUID,
    by: Optional[UUID],
    *,
    commit: bool = True,
) -> Optional[ClassAssignment]:
    """Set active=false. No-op when already inactive; None when the record does not exist."""
    obj = await get_assignment(db, assignment_id)
    if obj is None:
        return None
    async with class_key_lock(key_of(obj)):
        await db.refresh(obj)
        if not mark_inactive(obj, by):
            return obj
        if commit:
            await db.commit()
        else:
            await db.flush()
    logger.info("Deactivated assignment %s (%s)", obj.id, obj.class_id)
    return obj


async def complete_removal(db: AsyncSession, assignment_id: UUID, *, commit: bool = True) -> bool:
    """Hard delete. Reserved for the cascade deletion paths."""
    obj = await get_assignment(db, assignment_id)
    if obj is None:
        return False
    await db.delete(obj)
    if commit:
        await db.commit()
    else:
        await db.flush()
    logger.info("Removed assignment %s (%s)", assignment_id, obj.class_id)
    return True


AVAILABLE_CLASSES_LIMIT = 200
BATCH_RANGE_COUNT = 10


def batch_ranges(start_year: Optional[int] = None) -> List[str]:
    """Four-year batches starting this year and the following nine."""
    start = start_year if start_year is not None else datetime.utcnow().year
    return [f"{y}-{y + 4}" for y in range(start, start + BATCH_RANGE_COUNT)]


def all_class_keys(department: str, start_year: Optional[int] = None) -> List[ClassKey]:
    keys = []
    for batch in batch_ranges(start_year):
        for year, semesters in YEAR_SEMESTERS.items():
            for semester in semesters:
                for section in SectionCode:
                    keys.append(build_key(batch, year, semester, section, department))
    return keys


async def available_classes(
    db: AsyncSession,
    department: str,
    start_year: Optional[int] = None,
) -> AvailableClassesResponse:
    assigned_ids = {a.class_id for a in await list_department_assignments(db, department)}
    available, assigned = [], []
    for key in all_class_keys(department, start_year):
        (assigned if key.class_id in assigned_ids else available).append(ClassInfo.from_key(key))
    return AvailableClassesResponse(
        available_classes=available[:AVAILABLE_CLASSES_LIMIT],
        assigned_classes=assigned,
        total_available=len(available),
        total_assigned=len(assigned),
        batch_ranges=batch_ranges(start_year),
    )


async def department_assignments(
    db: AsyncSession,
    department: str,
    active_only: bool = False,
) -> DepartmentAssignmentsResponse:
    """Assignments of a department grouped by class, newest first within each class."""
    records = await list_department_assignments(db, department, active_only=active_only)
    groups: Dict[str, ClassGroup] = {}
    for a in records:
        group = groups.get(a.class_id)
        if group is None:
            try:
                info = ClassInfo.from_key(key_of(a))
            except ServiceError:
                logger.warning("Skipping assignment %s with unparsable coordinates", a.id)
                continue
            group = groups[a.class_id] = ClassGroup(class_info=info, assignments=[])
        group.assignments.append(to_response(a))
    active_count = sum(1 for a in records if a.active)
    return DepartmentAssignmentsResponse(
        assignments=list(groups.values()),
        total=len(records),
        active_count=active_count,
        inactive_count=len(records) - active_count,
    )
