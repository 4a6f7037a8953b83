"""Faculty removal cascade. Errors on the faculty, its assignments or its user are surfaced;
nothing here is best effort except the audit entry."""

import logging
from typing import Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.core.enums import AuditOperation, AuditStatus
from app.core.exceptions import ServiceError
from app.core.models import ClassAssignment, FacultyProfile, Student
from app.core.schemas import ClassInfo

from app.api.v1.audit.service import record_audit
from app.api.v1.class_assignments import resolver
from app.api.v1.class_assignments import service as store
from app.api.v1.class_assignments.schemas import AssignmentRemovalResponse

from .schemas import FacultyClassesResponse, FacultyRemovalResponse

logger = logging.getLogger(__name__)


async def get_profile(db: AsyncSession, profile_id: UUID) -> Optional[FacultyProfile]:
    return await db.get(FacultyProfile, profile_id)


async def remove_faculty(
    db: AsyncSession,
    profile_id: UUID,
    performed_by: Optional[UUID] = None,
) -> Optional[FacultyRemovalResponse]:
    """Hard-delete every assignment of the faculty, unbind its students, then delete the
    profile (embedded entries cascade) and the linked user. None when the profile does not exist."""
    profile = await get_profile(db, profile_id)
    if profile is None:
        return None
    user_id = profile.user_id
    records = await store.find_all_by_faculty(db, user_id)
    keys = []
    for r in records:
        try:
            keys.append(store.key_of(r))
        except ServiceError:
            logger.warning("Assignment %s has unparsable coordinates; removing without lock", r.id)

    cache_entries = len(profile.assigned_classes)
    async with store.class_key_lock(*keys):
        try:
            for r in records:
                await store.complete_removal(db, r.id, commit=False)
            result = await db.execute(
                update(Student)
                .where(Student.faculty_user_id == user_id)
                .values(faculty_user_id=None)
                .execution_options(synchronize_session=False)
            )
            students_unbound = result.rowcount or 0
            await db.delete(profile)
            await db.flush()
            user = await db.get(User, user_id)
            if user is not None:
                await db.delete(user)
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Faculty removal failed for profile %s", profile_id)
            await record_audit(
                db,
                AuditOperation.FACULTY_REMOVAL,
                faculty_user_id=user_id,
                performed_by=performed_by,
                status=AuditStatus.failed,
                details={"faculty_profile_id": profile_id, "assignments": len(records)},
                error_message="faculty removal rolled back",
            )
            raise ServiceError("Failed to remove faculty; nothing was deleted.", status.HTTP_500_INTERNAL_SERVER_ERROR)

    logger.info(
        "Removed faculty %s: %d assignments, %d cached entries, %d students unbound",
        user_id, len(records), cache_entries, students_unbound,
    )
    await record_audit(
        db,
        AuditOperation.FACULTY_REMOVAL,
        faculty_user_id=user_id,
        performed_by=performed_by,
        details={
            "faculty_profile_id": profile_id,
            "assignments_removed": [store.snapshot(r) for r in records],
            "students_unbound": students_unbound,
        },
    )
    return FacultyRemovalResponse(
        faculty_profile_id=profile_id,
        faculty_user_id=user_id,
        assignments_removed=len(records),
        cache_entries_removed=cache_entries,
        students_unbound=students_unbound,
        user_removed=user is not None,
    )


async def remove_assignment(
    db: AsyncSession,
    assignment_id: UUID,
    performed_by: Optional[UUID] = None,
) -> Optional[AssignmentRemovalResponse]:
    """completeRemoval of one assignment plus its cached copies on the owner's profile."""
    record = await store.get_assignment(db, assignment_id)
    if record is None:
        return None
    key = store.key_of(record)
    snapshot = store.snapshot(record)
    async with store.class_key_lock(key):
        result = await db.execute(
            select(FacultyProfile).where(FacultyProfile.user_id == record.faculty_user_id)
        )
        profile = result.scalar_one_or_none()
        removed_entries = 0
        try:
            if profile is not None:
                for entry in list(profile.assigned_classes):
                    if entry.class_id == record.class_id and entry.department == record.department:
                        profile.assigned_classes.remove(entry)
                        removed_entries += 1
            await store.complete_removal(db, assignment_id, commit=False)
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Removal of assignment %s failed", assignment_id)
            raise ServiceError("Failed to remove class assignment.", status.HTTP_500_INTERNAL_SERVER_ERROR)

    await record_audit(
        db,
        AuditOperation.ASSIGNMENT_REMOVAL,
        key=key,
        faculty_user_id=snapshot["faculty_user_id"],
        performed_by=performed_by,
        details={**snapshot, "cache_entries_removed": removed_entries},
    )
    return AssignmentRemovalResponse(
        removed_assignment=ClassInfo.from_key(key),
        assignment_id=assignment_id,
        cache_entries_removed=removed_entries,
    )


async def faculty_classes(db: AsyncSession, user_id: UUID) -> Optional[FacultyClassesResponse]:
    """Active classes of a faculty as the store sees them, plus the full history."""
    result = await db.execute(select(FacultyProfile).where(FacultyProfile.user_id == user_id))
    profile = result.scalar_one_or_none()
    if profile is None:
        return None
    active = [ClassInfo.from_key(store.key_of(a)) for a in await store.find_active_by_faculty(db, user_id)]
    history_rows = await db.execute(
        select(ClassAssignment)
        .where(ClassAssignment.faculty_user_id == user_id)
        .order_by(ClassAssignment.assigned_at.desc())
    )
    history = [
        {**store.snapshot(a), "active": a.active, "assigned_at": a.assigned_at, "deactivated_at": a.deactivated_at}
        for a in history_rows.scalars().all()
    ]
    legacy = resolver.legacy_key(profile)
    return FacultyClassesResponse(
        faculty_user_id=user_id,
        faculty_name=profile.full_name,
        department=profile.department,
        active_classes=active,
        assignment_history=history,
        legacy_class=ClassInfo.from_key(legacy) if legacy else None,
    )
