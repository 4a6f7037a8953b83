"""
Repair tooling for drifted class bindings. Not part of normal request paths.

backfill_student_class_ids  derive class_id and normalize year on legacy student rows
repair_student_bindings     re-resolve the owner of active students whose cached pointer is stale
detect_orphans              report assignments and students pointing at users that no longer exist
"""

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.core.class_key import ClassKey
from app.core.enums import AuditOperation, RecordStatus, ResolutionSource
from app.core.exceptions import OrphanedRecordDetected, ServiceError, UnresolvableFacultyBinding
from app.core.models import ClassAssignment, Student

from app.api.v1.audit.service import record_audit
from app.api.v1.class_assignments import resolver

from .schemas import BackfillReport, BindingRepairReport, OrphanReport
from .service import key_of

logger = logging.getLogger(__name__)


async def backfill_student_class_ids(
    db: AsyncSession,
    department: Optional[str] = None,
    dry_run: bool = False,
) -> BackfillReport:
    stmt = select(Student)
    if department is not None:
        stmt = stmt.where(Student.department == department)
    result = await db.execute(stmt)
    students = list(result.scalars().all())

    report = BackfillReport(scanned=len(students), updated=0, dry_run=dry_run)
    for s in students:
        try:
            key = key_of(s)
        except ServiceError as e:
            report.invalid.append({"student_id": s.id, "roll_number": s.roll_number, "error": e.message})
            continue
        if s.class_id == key.class_id and s.year == key.year.value and s.section == key.section.value:
            continue
        report.updated += 1
        if not dry_run:
            s.class_id = key.class_id
            s.year = key.year.value
            s.section = key.section.value

    if dry_run:
        return report
    await db.commit()
    logger.info("Backfilled class ids: %d of %d students, %d invalid", report.updated, report.scanned, len(report.invalid))
    if report.updated or report.invalid:
        await record_audit(
            db,
            AuditOperation.AUTO_REPAIR,
            department=department,
            details={"task": "backfill_class_ids", **report.model_dump()},
        )
    return report


async def _resolve_group(
    db: AsyncSession,
    key: ClassKey,
    students: List[Student],
) -> Tuple[Dict[UUID, Tuple[UUID, ResolutionSource]], List[Student]]:
    """Owner per student id. Students nobody can own are returned separately."""
    owners: Dict[UUID, Tuple[UUID, ResolutionSource]] = {}
    try:
        binding = await resolver.resolve(db, key, audit=False)
    except UnresolvableFacultyBinding:
        binding = None
    if binding is not None:
        for s in students:
            owners[s.id] = (binding.faculty_user_id, binding.source)
        return owners, []

    unresolved = []
    for s in students:
        if s.created_by is None:
            unresolved.append(s)
            continue
        try:
            fallback = await resolver.resolve(db, key, created_by=s.created_by, audit=False)
        except UnresolvableFacultyBinding:
            unresolved.append(s)
            continue
        owners[s.id] = (fallback.faculty_user_id, fallback.source)
    return owners, unresolved


async def repair_student_bindings(
    db: AsyncSession,
    department: Optional[str] = None,
    dry_run: bool = False,
    performed_by: Optional[UUID] = None,
) -> BindingRepairReport:
    stmt = select(Student).where(
        Student.status == RecordStatus.active.value,
        Student.class_id.is_not(None),
    )
    if department is not None:
        stmt = stmt.where(Student.department == department)
    result = await db.execute(stmt)

    groups: Dict[Tuple[str, str], List[Student]] = defaultdict(list)
    for s in result.scalars().all():
        groups[(s.class_id, s.department)].append(s)

    report = BindingRepairReport(classes_checked=len(groups), students_repaired=0, dry_run=dry_run)
    changes: List[Tuple[Student, UUID, ResolutionSource]] = []
    for (class_id, dept), students in groups.items():
        try:
            key = key_of(students[0])
        except ServiceError as e:
            report.unresolved.append({"class_id": class_id, "department": dept, "error": e.message})
            continue
        owners, orphans = await _resolve_group(db, key, students)
        for s in orphans:
            report.unresolved.append({"student_id": s.id, "class_id": class_id, "department": dept})
        for s in students:
            if s.id not in owners:
                continue
            owner, source = owners[s.id]
            if s.faculty_user_id != owner:
                changes.append((s, owner, source))

    for s, owner, source in changes:
        report.students_repaired += 1
        report.by_source[source.value] = report.by_source.get(source.value, 0) + 1
        if not dry_run:
            s.faculty_user_id = owner

    if dry_run or not changes:
        return report
    await db.commit()
    logger.info("Repaired %d student bindings across %d classes", report.students_repaired, len(groups))
    for s, owner, source in changes:
        await record_audit(
            db,
            AuditOperation.AUTO_REPAIR,
            class_id=s.class_id,
            department=s.department,
            faculty_user_id=owner,
            source=source,
            performed_by=performed_by,
            details={"task": "repair_bindings", "student_id": s.id, "roll_number": s.roll_number},
        )
    return report


async def detect_orphans(
    db: AsyncSession,
    department: Optional[str] = None,
    strict: bool = False,
) -> OrphanReport:
    """With strict=True, any assignment or student pointing at a missing user raises OrphanedRecordDetected."""
    user_ids = {u for u in (await db.execute(select(User.id))).scalars().all()}

    stmt = select(ClassAssignment)
    if department is not None:
        stmt = stmt.where(ClassAssignment.department == department)
    assignments = (await db.execute(stmt)).scalars().all()

    stmt = select(Student).where(Student.status == RecordStatus.active.value)
    if department is not None:
        stmt = stmt.where(Student.department == department)
    students = (await db.execute(stmt)).scalars().all()

    report = OrphanReport(
        assignments_without_faculty=[a.id for a in assignments if a.faculty_user_id not in user_ids],
        students_with_missing_faculty=[
            s.id for s in students if s.faculty_user_id is not None and s.faculty_user_id not in user_ids
        ],
        students_without_faculty=[s.id for s in students if s.faculty_user_id is None],
    )
    if report.has_orphans:
        logger.warning(
            "Orphans: %d assignments, %d students point at missing faculty",
            len(report.assignments_without_faculty), len(report.students_with_missing_faculty),
        )
        if strict:
            raise OrphanedRecordDetected(
                "Records reference faculty users that no longer exist",
                {
                    "assignments": report.assignments_without_faculty,
                    "students": report.students_with_missing_faculty,
                },
            )
    return report
