"""
Class ownership changes. The only writer of faculty_class_entries and students.faculty_user_id
outside initial student creation.

reassign_class runs four steps:
1. validate the target (codec, department, no other active owner)   -- reads only
2. deactivate the faculty's previous active assignment(s)
3. create the new active assignment and mirror it into the faculty's cached class list
4. point every active student of the target class at the new owner
Steps 2-4 share one transaction committed at the end under the class lock; on failure nothing
past step 1 is kept, and the attempt is audited with the step it reached.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.class_key import ClassKey
from app.core.enums import AuditOperation, AuditStatus, ResolutionSource
from app.core.exceptions import (
    BindingValidationFailed,
    ClassAlreadyAssigned,
    ConcurrentAssignmentConflict,
    ReassignmentIncomplete,
    ServiceError,
)
from app.core.models import ClassAssignment, FacultyClassEntry, FacultyProfile, Student

from app.api.v1.audit.service import record_audit

from . import resolver
from . import service as store

logger = logging.getLogger(__name__)


@dataclass
class ReassignmentResult:
    assignment: ClassAssignment
    key: ClassKey
    previous_assignments: List[Dict[str, Any]] = field(default_factory=list)
    replaced_assignment: Optional[Dict[str, Any]] = None
    students_updated: int = 0


async def _profile_by_user(db: AsyncSession, user_id: UUID) -> Optional[FacultyProfile]:
    result = await db.execute(select(FacultyProfile).where(FacultyProfile.user_id == user_id))
    return result.scalar_one_or_none()


def _mirror_deactivation(profile: Optional[FacultyProfile], class_id: str, department: str) -> int:
    if profile is None:
        return 0
    changed = 0
    for entry in profile.assigned_classes:
        if entry.active and entry.class_id == class_id and entry.department == department:
            entry.active = False
            entry.deactivated_at = datetime.utcnow()
            changed += 1
    return changed


def _mirror_activation(
    profile: FacultyProfile,
    key: ClassKey,
    assigned_by: UUID,
    notes: Optional[str],
) -> bool:
    for entry in profile.assigned_classes:
        if entry.active and entry.class_id == key.class_id and entry.department == key.department:
            return False
    profile.assigned_classes.append(
        FacultyClassEntry(
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
    )
    return True


async def _rebind_students(db: AsyncSession, key: ClassKey, faculty_user_id: UUID) -> int:
    """Keyed by class, not by the previous owner, so ownerless students are picked up too.
    Returns the number of students whose owner changed."""
    result = await db.execute(
        update(Student)
        .where(
            Student.class_id == key.class_id,
            Student.department == key.department,
            Student.status == "active",
            Student.faculty_user_id.is_distinct_from(faculty_user_id),
        )
        .values(faculty_user_id=faculty_user_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def reassign_class(
    db: AsyncSession,
    faculty_user_id: UUID,
    key: ClassKey,
    *,
    performed_by: UUID,
    notes: Optional[str] = None,
    replace_existing: bool = False,
) -> ReassignmentResult:
    """Make faculty_user_id the advisor of key. Re-running the same request is a no-op."""
    profile = await resolver.get_active_profile(db, faculty_user_id)
    if profile is None:
        raise ServiceError("Faculty not found or inactive.", status.HTTP_404_NOT_FOUND)
    if profile.department != key.department:
        raise ServiceError(
            "Faculty can only be assigned to classes of their own department.",
            status.HTTP_403_FORBIDDEN,
        )

    previous = await store.find_active_by_faculty(db, faculty_user_id)
    lock_keys = [key] + [store.key_of(a) for a in previous]

    async with store.class_key_lock(*lock_keys):
        # Step 1 (reads only), repeated under the lock.
        locked_ids = {a.id for a in previous}
        previous = await store.find_active_by_faculty(db, faculty_user_id)
        if any(a.id not in locked_ids for a in previous):
            logger.warning("Assignments of %s changed while waiting for the class lock", faculty_user_id)
            raise ConcurrentAssignmentConflict(key.class_id)
        holder = await store.find_active_by_class_key(db, key)
        if holder is not None and holder.faculty_user_id != faculty_user_id and not replace_existing:
            raise ClassAlreadyAssigned(key.class_id, holder.faculty_user_id)
        stale_owners = [
            p for p in await resolver.cached_owners(db, key) if p.user_id != faculty_user_id
        ]
        if holder is None and stale_owners and not replace_existing:
            live = [p for p in stale_owners if p.status == "active"]
            if live:
                raise ClassAlreadyAssigned(key.class_id, live[0].user_id)

        step = 2
        previous_payload: List[Dict[str, Any]] = []
        replaced_payload: Optional[Dict[str, Any]] = None
        try:
            for a in previous:
                if a.class_id == key.class_id and a.department == key.department:
                    continue
                store.mark_inactive(a, performed_by)
                _mirror_deactivation(profile, a.class_id, a.department)
                previous_payload.append(store.snapshot(a))
            if holder is not None and holder.faculty_user_id != faculty_user_id:
                store.mark_inactive(holder, performed_by)
                _mirror_deactivation(await _profile_by_user(db, holder.faculty_user_id), key.class_id, key.department)
                replaced_payload = store.snapshot(holder)
            for other in stale_owners:
                _mirror_deactivation(other, key.class_id, key.department)
            await db.flush()

            step = 3
            record = await store.insert_active(
                db, faculty_user_id, key, performed_by, notes=notes, commit=False
            )
            _mirror_activation(profile, key, performed_by, notes)
            await db.flush()

            step = 4
            students_updated = await _rebind_students(db, key, faculty_user_id)
            await db.commit()
        except (ClassAlreadyAssigned, ConcurrentAssignmentConflict) as exc:
            await db.rollback()
            await _audit_failure(db, key, faculty_user_id, performed_by, step, previous_payload, exc.message)
            raise
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.exception("Reassignment of %s to %s failed at step %d", key.class_id, faculty_user_id, step)
            await _audit_failure(db, key, faculty_user_id, performed_by, step, previous_payload, repr(exc))
            raise ReassignmentIncomplete(key.class_id, step, previous_payload, cause=type(exc).__name__)

    logger.info(
        "Reassigned %s (%s) to %s; %d previous deactivated, %d students updated",
        key.class_id, key.department, faculty_user_id, len(previous_payload), students_updated,
    )
    await record_audit(
        db,
        AuditOperation.REASSIGNMENT,
        key=key,
        faculty_user_id=faculty_user_id,
        source=ResolutionSource.ASSIGNMENT_STORE,
        performed_by=performed_by,
        details={
            "assignment_id": record.id,
            "previous_assignments": previous_payload,
            "replaced_assignment": replaced_payload,
            "students_updated": students_updated,
        },
    )
    return ReassignmentResult(
        assignment=record,
        key=key,
        previous_assignments=previous_payload,
        replaced_assignment=replaced_payload,
        students_updated=students_updated,
    )


async def _audit_failure(
    db: AsyncSession,
    key: ClassKey,
    faculty_user_id: UUID,
    performed_by: UUID,
    step: int,
    previous_payload: List[Dict[str, Any]],
    error: str,
) -> None:
    await record_audit(
        db,
        AuditOperation.REASSIGNMENT,
        key=key,
        faculty_user_id=faculty_user_id,
        performed_by=performed_by,
        status=AuditStatus.failed,
        details={
            "step_reached": step,
            "previous_assignments": previous_payload,
            "rolled_back": True,
        },
        error_message=error,
    )


async def release_assignment(
    db: AsyncSession,
    assignment_id: UUID,
    performed_by: UUID,
) -> Optional[ClassAssignment]:
    """Deactivate an assignment and its cached copy. Students keep their last owner pointer."""
    record = await store.get_assignment(db, assignment_id)
    if record is None:
        return None
    key = store.key_of(record)
    async with store.class_key_lock(key):
        await db.refresh(record)
        if not store.mark_inactive(record, performed_by):
            raise ServiceError("Assignment is already inactive.", status.HTTP_400_BAD_REQUEST)
        _mirror_deactivation(await _profile_by_user(db, record.faculty_user_id), record.class_id, record.department)
        await db.commit()
    await record_audit(
        db,
        AuditOperation.RELEASE,
        key=key,
        faculty_user_id=record.faculty_user_id,
        source=ResolutionSource.ASSIGNMENT_STORE,
        performed_by=performed_by,
        details={"assignment_id": record.id},
    )
    return record


async def migrate_students(
    db: AsyncSession,
    from_key: ClassKey,
    to_key: ClassKey,
    faculty_user_id: UUID,
    *,
    performed_by: Optional[UUID] = None,
) -> int:
    """Move the faculty's own active students of from_key into to_key. Assignments are untouched.
    Only students currently owned by faculty_user_id move."""
    if from_key == to_key:
        return 0
    if not await resolver.validate_binding(db, faculty_user_id, to_key):
        raise BindingValidationFailed(faculty_user_id, to_key.class_id)

    try:
        result = await db.execute(
            update(Student)
            .where(
                Student.class_id == from_key.class_id,
                Student.department == from_key.department,
                Student.faculty_user_id == faculty_user_id,
                Student.status == "active",
            )
            .values(
                class_id=to_key.class_id,
                department=to_key.department,
                batch=to_key.batch,
                year=to_key.year.value,
                semester=to_key.semester,
                section=to_key.section.value,
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError(
            f"Roll number conflict while moving students into {to_key.class_id}.",
            status.HTTP_409_CONFLICT,
        )
    migrated = result.rowcount or 0
    logger.info("Migrated %d students %s -> %s for %s", migrated, from_key.class_id, to_key.class_id, faculty_user_id)
    await record_audit(
        db,
        AuditOperation.STUDENT_MIGRATION,
        key=to_key,
        faculty_user_id=faculty_user_id,
        source=ResolutionSource.ASSIGNMENT_STORE,
        performed_by=performed_by,
        details={"from_class_id": from_key.class_id, "to_class_id": to_key.class_id, "migrated": migrated},
    )
    return migrated
