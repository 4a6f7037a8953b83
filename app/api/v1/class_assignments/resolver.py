"""
Resolve which faculty currently owns a class. Precedence, first definitive answer wins:
1. class_assignments (authoritative)
2. faculty_class_entries of active faculty profiles (legacy data not yet in the store)
3. creator fallback: the user who created the record, if an active faculty whose own recorded
   coordinates match the class (repair of orphaned records only)
Otherwise UnresolvableFacultyBinding. Results are snapshots; re-check with validate_binding
right before any write that depends on them.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.class_key import ClassKey, build_key
from app.core.enums import AuditOperation, AuditStatus, ResolutionSource
from app.core.exceptions import (
    InvalidClassCoordinate,
    InvalidYearSemesterCombination,
    UnresolvableFacultyBinding,
)
from app.core.models import FacultyClassEntry, FacultyProfile

from app.api.v1.audit.service import record_audit

from . import service as store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FacultyBinding:
    faculty_user_id: UUID
    faculty_profile: FacultyProfile
    source: ResolutionSource
    assignment_id: Optional[UUID] = None


async def get_active_profile(db: AsyncSession, user_id: UUID) -> Optional[FacultyProfile]:
    result = await db.execute(
        select(FacultyProfile).where(
            FacultyProfile.user_id == user_id,
            FacultyProfile.status == "active",
        )
    )
    return result.scalar_one_or_none()


def _entry_key(entry: FacultyClassEntry) -> Optional[ClassKey]:
    try:
        return build_key(entry.batch, entry.year, entry.semester, entry.section, entry.department)
    except (InvalidClassCoordinate, InvalidYearSemesterCombination):
        logger.warning("Unparsable cached class entry %s on faculty %s", entry.id, entry.faculty_id)
        return None


def legacy_key(profile: FacultyProfile) -> Optional[ClassKey]:
    """Key from the single-slot advisor fields, if the profile still carries them."""
    if not profile.is_class_advisor or not (profile.batch and profile.year and profile.semester and profile.section):
        return None
    try:
        return build_key(profile.batch, profile.year, profile.semester, profile.section, profile.department)
    except (InvalidClassCoordinate, InvalidYearSemesterCombination):
        return None


async def _from_assignment_store(db: AsyncSession, key: ClassKey) -> Optional[FacultyBinding]:
    record = await store.find_active_by_class_key(db, key)
    if record is None:
        return None
    profile = await get_active_profile(db, record.faculty_user_id)
    if profile is None:
        logger.warning(
            "Active assignment %s for %s points at user %s with no active faculty profile",
            record.id, key.class_id, record.faculty_user_id,
        )
        return None
    return FacultyBinding(
        faculty_user_id=record.faculty_user_id,
        faculty_profile=profile,
        source=ResolutionSource.ASSIGNMENT_STORE,
        assignment_id=record.id,
    )


async def _from_embedded_cache(db: AsyncSession, key: ClassKey) -> Optional[FacultyBinding]:
    result = await db.execute(
        select(FacultyProfile)
        .join(FacultyClassEntry, FacultyClassEntry.faculty_id == FacultyProfile.id)
        .where(
            FacultyClassEntry.class_id == key.class_id,
            FacultyClassEntry.department == key.department,
            FacultyClassEntry.active.is_(True),
            FacultyProfile.status == "active",
        )
    )
    profiles = list(result.scalars().unique().all())
    if not profiles:
        return None
    if len(profiles) > 1:
        logger.warning(
            "Embedded cache names %d faculty for %s; not definitive",
            len(profiles), key.class_id,
        )
        return None
    profile = profiles[0]
    return FacultyBinding(
        faculty_user_id=profile.user_id,
        faculty_profile=profile,
        source=ResolutionSource.EMBEDDED_CACHE,
    )


async def _from_creator(db: AsyncSession, key: ClassKey, created_by: UUID) -> Optional[FacultyBinding]:
    profile = await get_active_profile(db, created_by)
    if profile is None or profile.department != key.department:
        return None
    matches = legacy_key(profile) == key or any(
        _entry_key(e) == key for e in profile.assigned_classes if e.active
    )
    if not matches:
        logger.info("Creator %s does not match coordinates of %s; fallback rejected", created_by, key.class_id)
        return None
    return FacultyBinding(
        faculty_user_id=profile.user_id,
        faculty_profile=profile,
        source=ResolutionSource.CREATOR_FALLBACK,
    )


async def resolve(
    db: AsyncSession,
    key: ClassKey,
    *,
    created_by: Optional[UUID] = None,
    performed_by: Optional[UUID] = None,
    audit: bool = True,
) -> FacultyBinding:
    """Current owner of key. created_by enables the creator fallback."""
    binding = await _from_assignment_store(db, key)
    if binding is None:
        binding = await _from_embedded_cache(db, key)
    if binding is None and created_by is not None:
        binding = await _from_creator(db, key, created_by)

    if binding is None:
        logger.error("No faculty binding for %s (%s)", key.class_id, key.department)
        if audit:
            await record_audit(
                db,
                AuditOperation.FACULTY_RESOLUTION,
                key=key,
                performed_by=performed_by,
                status=AuditStatus.failed,
                details=key.coordinates(),
                error_message="unresolvable",
            )
        raise UnresolvableFacultyBinding(key.class_id)

    if binding.source != ResolutionSource.ASSIGNMENT_STORE:
        logger.warning("Resolved %s via %s; assignment store has no owner", key.class_id, binding.source.value)
    else:
        logger.debug("Resolved %s via assignment store: %s", key.class_id, binding.faculty_user_id)
    if audit:
        await record_audit(
            db,
            AuditOperation.FACULTY_RESOLUTION,
            key=key,
            faculty_user_id=binding.faculty_user_id,
            source=binding.source,
            performed_by=performed_by,
            details={**key.coordinates(), "faculty_name": binding.faculty_profile.full_name},
        )
    return binding


async def current_advisor(db: AsyncSession, key: ClassKey) -> Optional[FacultyBinding]:
    """Owner from the store or the embedded cache, without auditing. None when the class is free."""
    binding = await _from_assignment_store(db, key)
    if binding is None:
        binding = await _from_embedded_cache(db, key)
    return binding


async def cached_owners(db: AsyncSession, key: ClassKey) -> List[FacultyProfile]:
    """Every profile whose embedded cache marks key as an active class, whatever the store says."""
    result = await db.execute(
        select(FacultyProfile)
        .join(FacultyClassEntry, FacultyClassEntry.faculty_id == FacultyProfile.id)
        .where(
            FacultyClassEntry.class_id == key.class_id,
            FacultyClassEntry.department == key.department,
            FacultyClassEntry.active.is_(True),
        )
    )
    return list(result.scalars().unique().all())


async def resolve_coordinates(
    db: AsyncSession,
    coordinates: Dict[str, Any],
    *,
    department: Optional[str] = None,
    created_by: Optional[UUID] = None,
    performed_by: Optional[UUID] = None,
) -> FacultyBinding:
    key = build_key(
        coordinates.get("batch"),
        coordinates.get("year"),
        coordinates.get("semester"),
        coordinates.get("section"),
        coordinates.get("department") or department,
    )
    return await resolve(db, key, created_by=created_by, performed_by=performed_by)


async def validate_binding(db: AsyncSession, faculty_user_id: UUID, key: ClassKey) -> bool:
    """True when the faculty's own active assignment coordinates derive exactly this key."""
    profile = await get_active_profile(db, faculty_user_id)
    if profile is None:
        logger.info("Binding check: %s has no active faculty profile", faculty_user_id)
        return False

    records = await store.find_active_by_faculty(db, faculty_user_id)
    if records:
        candidates = []
        for r in records:
            try:
                candidates.append(store.key_of(r))
            except (InvalidClassCoordinate, InvalidYearSemesterCombination):
                logger.warning("Assignment %s has unparsable coordinates", r.id)
    else:
        candidates = [_entry_key(e) for e in profile.assigned_classes if e.active]

    valid = key in candidates
    if not valid:
        logger.info("Binding check failed: %s does not own %s", faculty_user_id, key.class_id)
    return valid
