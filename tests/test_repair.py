import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.class_assignments import reassignment
from app.api.v1.class_assignments import service as store
from app.api.v1.students import repair
from app.core.exceptions import OrphanedRecordDetected
from app.core.models import ClassAssignment, FacultyAuditLog, Student


async def _reload(db: AsyncSession, student: Student) -> Student:
    await db.refresh(student)
    return student


@pytest.mark.asyncio
async def test_backfill_derives_missing_class_ids(db_session: AsyncSession, make_student, cse_key) -> None:
    missing = await make_student(cse_key, "CS001", class_id=None)
    legacy = await make_student(cse_key, "CS002")
    legacy.year = "2nd"
    broken = await make_student(cse_key, "CS003", class_id=None)
    broken.semester = 7
    await db_session.commit()

    preview = await repair.backfill_student_class_ids(db_session, dry_run=True)
    assert preview.updated == 2
    assert (await _reload(db_session, missing)).class_id is None

    report = await repair.backfill_student_class_ids(db_session)
    assert report.scanned == 3
    assert report.updated == 2
    assert [item["roll_number"] for item in report.invalid] == ["CS003"]
    assert (await _reload(db_session, missing)).class_id == cse_key.class_id
    assert (await _reload(db_session, legacy)).year == "2nd Year"

    again = await repair.backfill_student_class_ids(db_session)
    assert again.updated == 0


@pytest.mark.asyncio
async def test_repair_points_students_at_store_owner(
    db_session: AsyncSession, make_faculty, make_student, cse_key, hod_id
) -> None:
    x = await make_faculty()
    y = await make_faculty()
    await store.create_active(db_session, y.user_id, cse_key, hod_id)
    drifted = await make_student(cse_key, "CS001", faculty_user_id=x.user_id)
    ownerless = await make_student(cse_key, "CS002", faculty_user_id=None)
    correct = await make_student(cse_key, "CS003", faculty_user_id=y.user_id)

    preview = await repair.repair_student_bindings(db_session, dry_run=True)
    assert preview.students_repaired == 2
    assert (await _reload(db_session, drifted)).faculty_user_id == x.user_id

    report = await repair.repair_student_bindings(db_session, performed_by=hod_id)
    assert report.classes_checked == 1
    assert report.students_repaired == 2
    assert report.by_source == {"assignment_store": 2}
    for s in (drifted, ownerless, correct):
        assert (await _reload(db_session, s)).faculty_user_id == y.user_id

    logs = (
        await db_session.execute(select(FacultyAuditLog).where(FacultyAuditLog.operation == "auto_repair"))
    ).scalars().all()
    assert len(logs) == 2


@pytest.mark.asyncio
async def test_repair_uses_creator_fallback_only_when_coordinates_match(
    db_session: AsyncSession, make_faculty, make_student, cse_key
) -> None:
    creator = await make_faculty(legacy_key=cse_key)
    stranger = await make_faculty()
    adopted = await make_student(cse_key, "CS001", created_by=creator.user_id)
    stray = await make_student(cse_key, "CS002", created_by=stranger.user_id)

    report = await repair.repair_student_bindings(db_session)
    assert report.by_source == {"creator_fallback": 1}
    assert [item["student_id"] for item in report.unresolved] == [stray.id]
    assert (await _reload(db_session, adopted)).faculty_user_id == creator.user_id
    assert (await _reload(db_session, stray)).faculty_user_id is None


@pytest.mark.asyncio
async def test_detect_orphans(db_session: AsyncSession, make_faculty, make_student, cse_key, other_key, hod_id) -> None:
    x = await make_faculty()
    await reassignment.reassign_class(db_session, x.user_id, cse_key, performed_by=hod_id)
    ghost_id = uuid.uuid4()
    # SQLite does not enforce foreign keys here, which is how legacy rows end up orphaned.
    ghost = ClassAssignment(
        faculty_user_id=ghost_id,
        class_id=other_key.class_id,
        department="CSE",
        batch=other_key.batch,
        year=other_key.year.value,
        semester=other_key.semester,
        section=other_key.section.value,
        active=True,
        assigned_by=hod_id,
    )
    db_session.add(ghost)
    await db_session.commit()
    lost = await make_student(other_key, "CS001", faculty_user_id=ghost_id)
    await make_student(cse_key, "CS002", faculty_user_id=x.user_id)
    unbound = await make_student(cse_key, "CS003")

    report = await repair.detect_orphans(db_session)
    assert report.assignments_without_faculty == [ghost.id]
    assert report.students_with_missing_faculty == [lost.id]
    assert report.students_without_faculty == [unbound.id]

    with pytest.raises(OrphanedRecordDetected) as exc:
        await repair.detect_orphans(db_session, strict=True)
    assert exc.value.record_ids["assignments"] == [ghost.id]


@pytest.mark.asyncio
async def test_detect_orphans_clean(db_session: AsyncSession, make_faculty, make_student, cse_key, hod_id) -> None:
    x = await make_faculty()
    await reassignment.reassign_class(db_session, x.user_id, cse_key, performed_by=hod_id)
    await make_student(cse_key, "CS001", faculty_user_id=x.user_id)

    report = await repair.detect_orphans(db_session, strict=True)
    assert not report.has_orphans


@pytest.mark.asyncio
async def test_repair_reports_students_of_drifted_creator(
    db_session: AsyncSession, make_faculty, make_student, cse_key
) -> None:
    creator = await make_faculty()
    creator.is_class_advisor = True
    creator.batch = "2023-2027"
    creator.year = "2nd Year"
    creator.semester = 5
    creator.section = "A"
    await db_session.commit()
    student = await make_student(cse_key, "CS001", created_by=creator.user_id)

    report = await repair.repair_student_bindings(db_session)
    assert report.students_repaired == 0
    assert [item["student_id"] for item in report.unresolved] == [student.id]
