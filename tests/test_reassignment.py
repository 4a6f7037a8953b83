from contextlib import asynccontextmanager

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.class_assignments import reassignment, resolver
from app.api.v1.class_assignments import service as store
from app.core.class_key import ClassKey, build_key
from app.core.exceptions import (
    BindingValidationFailed,
    ClassAlreadyAssigned,
    ConcurrentAssignmentConflict,
    ReassignmentIncomplete,
    ServiceError,
)
from app.core.models import ClassAssignment, FacultyAuditLog, FacultyClassEntry, Student


async def _students_of(db: AsyncSession, key):
    result = await db.execute(
        select(Student)
        .where(Student.class_id == key.class_id, Student.department == key.department)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


@pytest.mark.asyncio
async def test_reassign_rebinds_every_active_student(
    db_session: AsyncSession, make_faculty, make_student, cse_key, hod_id
) -> None:
    x = await make_faculty()
    y = await make_faculty()
    await store.create_active(db_session, x.user_id, cse_key, hod_id)
    for n in range(1, 6):
        await make_student(cse_key, f"CS{n:03d}", faculty_user_id=x.user_id)
    # Ownerless after earlier drift; keyed by class, so it is picked up too.
    await make_student(cse_key, "CS006", faculty_user_id=None)

    result = await reassignment.reassign_class(
        db_session, y.user_id, cse_key, performed_by=hod_id, replace_existing=True
    )
    assert result.assignment.faculty_user_id == y.user_id
    assert result.students_updated == 6
    assert result.replaced_assignment["faculty_user_id"] == x.user_id

    students = await _students_of(db_session, cse_key)
    assert {s.faculty_user_id for s in students} == {y.user_id}

    again = await reassignment.reassign_class(
        db_session, y.user_id, cse_key, performed_by=hod_id, replace_existing=True
    )
    assert again.assignment.id == result.assignment.id
    assert again.students_updated == 0
    assert again.previous_assignments == []
    assert again.replaced_assignment is None
    students = await _students_of(db_session, cse_key)
    assert {s.faculty_user_id for s in students} == {y.user_id}

    active = (
        await db_session.execute(
            select(ClassAssignment).where(ClassAssignment.active.is_(True))
        )
    ).scalars().all()
    assert [a.faculty_user_id for a in active] == [y.user_id]


@pytest.mark.asyncio
async def test_reassign_refuses_held_class_without_replace(db_session: AsyncSession, make_faculty, cse_key, hod_id) -> None:
    x = await make_faculty()
    y = await make_faculty()
    await store.create_active(db_session, x.user_id, cse_key, hod_id)

    with pytest.raises(ClassAlreadyAssigned):
        await reassignment.reassign_class(db_session, y.user_id, cse_key, performed_by=hod_id)

    holder = await store.find_active_by_class_key(db_session, cse_key)
    assert holder.faculty_user_id == x.user_id
    assert await store.find_active_by_faculty(db_session, y.user_id) == []


@pytest.mark.asyncio
async def test_reassign_refuses_class_cached_by_another_active_faculty(
    db_session: AsyncSession, make_faculty, add_cache_entry, cse_key, hod_id
) -> None:
    legacy = await make_faculty()
    newcomer = await make_faculty()
    await add_cache_entry(legacy, cse_key)

    with pytest.raises(ClassAlreadyAssigned) as exc:
        await reassignment.reassign_class(db_session, newcomer.user_id, cse_key, performed_by=hod_id)
    assert exc.value.holder_user_id == legacy.user_id


@pytest.mark.asyncio
async def test_reassign_moves_faculty_off_previous_class(
    db_session: AsyncSession, make_faculty, make_student, cse_key, other_key, hod_id
) -> None:
    x = await make_faculty()
    first = await reassignment.reassign_class(db_session, x.user_id, cse_key, performed_by=hod_id, notes="initial")
    await make_student(cse_key, "CS001", faculty_user_id=x.user_id)

    second = await reassignment.reassign_class(db_session, x.user_id, other_key, performed_by=hod_id)
    assert len(second.previous_assignments) == 1
    assert second.previous_assignments[0]["class_id"] == cse_key.class_id
    assert second.previous_assignments[0]["assignment_id"] == first.assignment.id

    old = await store.get_assignment(db_session, first.assignment.id)
    assert old.active is False
    assert old.deactivated_by == hod_id
    active = await store.find_active_by_faculty(db_session, x.user_id)
    assert [a.class_id for a in active] == [other_key.class_id]

    # Embedded cache mirrors the store.
    entries = {(e.class_id, e.active) for e in x.assigned_classes}
    assert entries == {(cse_key.class_id, False), (other_key.class_id, True)}

    # Students of the old class keep their last owner pointer.
    (old_student,) = await _students_of(db_session, cse_key)
    assert old_student.faculty_user_id == x.user_id


@pytest.mark.asyncio
async def test_reassign_rejects_other_department_and_inactive_faculty(db_session: AsyncSession, make_faculty, cse_key, hod_id) -> None:
    it_faculty = await make_faculty("IT")
    with pytest.raises(ServiceError) as exc:
        await reassignment.reassign_class(db_session, it_faculty.user_id, cse_key, performed_by=hod_id)
    assert exc.value.status_code == 403

    inactive = await make_faculty(status="inactive")
    with pytest.raises(ServiceError) as exc:
        await reassignment.reassign_class(db_session, inactive.user_id, cse_key, performed_by=hod_id)
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_reassignment_is_audited(db_session: AsyncSession, make_faculty, cse_key, hod_id) -> None:
    x = await make_faculty()
    await reassignment.reassign_class(db_session, x.user_id, cse_key, performed_by=hod_id)

    log = (
        await db_session.execute(select(FacultyAuditLog).where(FacultyAuditLog.operation == "reassignment"))
    ).scalars().one()
    assert log.status == "success"
    assert log.faculty_user_id == x.user_id
    assert log.performed_by == hod_id
    assert log.details["students_updated"] == 0


@pytest.mark.asyncio
async def test_release_assignment(db_session: AsyncSession, make_faculty, cse_key, hod_id) -> None:
    x = await make_faculty()
    result = await reassignment.reassign_class(db_session, x.user_id, cse_key, performed_by=hod_id)

    released = await reassignment.release_assignment(db_session, result.assignment.id, hod_id)
    assert released.active is False
    assert [e.active for e in x.assigned_classes] == [False]

    with pytest.raises(ServiceError) as exc:
        await reassignment.release_assignment(db_session, result.assignment.id, hod_id)
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_migrate_students_moves_only_own_cohort(
    db_session: AsyncSession, make_faculty, make_student, cse_key, other_key, hod_id
) -> None:
    x = await make_faculty()
    y = await make_faculty()
    await reassignment.reassign_class(db_session, x.user_id, cse_key, performed_by=hod_id)
    await make_student(cse_key, "CS001", faculty_user_id=x.user_id)
    await make_student(cse_key, "CS002", faculty_user_id=x.user_id)
    await make_student(cse_key, "CS003", faculty_user_id=y.user_id)

    # Not yet advisor of the target class.
    with pytest.raises(BindingValidationFailed):
        await reassignment.migrate_students(db_session, cse_key, other_key, x.user_id)

    await reassignment.reassign_class(db_session, x.user_id, other_key, performed_by=hod_id)
    moved = await reassignment.migrate_students(db_session, cse_key, other_key, x.user_id, performed_by=hod_id)
    assert moved == 2

    target = await _students_of(db_session, other_key)
    assert sorted(s.roll_number for s in target) == ["CS001", "CS002"]
    assert {s.section for s in target} == {"B"}
    left = await _students_of(db_session, cse_key)
    assert [s.roll_number for s in left] == ["CS003"]

    # Assignments untouched by migration.
    assert [a.class_id for a in await store.find_active_by_faculty(db_session, x.user_id)] == [other_key.class_id]


@pytest.mark.asyncio
async def test_migrate_students_roll_number_conflict(
    db_session: AsyncSession, make_faculty, make_student, cse_key, other_key, hod_id
) -> None:
    x = await make_faculty()
    await reassignment.reassign_class(db_session, x.user_id, cse_key, performed_by=hod_id)
    await make_student(cse_key, "CS001", faculty_user_id=x.user_id)
    await reassignment.reassign_class(db_session, x.user_id, other_key, performed_by=hod_id)
    await make_student(other_key, "CS001", faculty_user_id=x.user_id)

    with pytest.raises(ServiceError) as exc:
        await reassignment.migrate_students(db_session, cse_key, other_key, x.user_id)
    assert exc.value.status_code == 409
    (kept,) = await _students_of(db_session, cse_key)
    assert kept.roll_number == "CS001"


def _active_row(faculty_user_id, key: ClassKey, assigned_by) -> ClassAssignment:
    return ClassAssignment(
        faculty_user_id=faculty_user_id,
        class_id=key.class_id,
        department=key.department,
        batch=key.batch,
        year=key.year.value,
        semester=key.semester,
        section=key.section.value,
        active=True,
        assigned_by=assigned_by,
    )


async def _failed_reassignment_log(db: AsyncSession) -> FacultyAuditLog:
    result = await db.execute(
        select(FacultyAuditLog).where(
            FacultyAuditLog.operation == "reassignment",
            FacultyAuditLog.status == "failed",
        )
    )
    return result.scalars().one()


@pytest.mark.asyncio
async def test_conflict_at_insert_keeps_previous_class(
    db_session: AsyncSession, session_factory, make_faculty, cse_key, other_key, hod_id, monkeypatch
) -> None:
    x = await make_faculty()
    y = await make_faculty()
    x_id, y_id = x.user_id, y.user_id
    first = await reassignment.reassign_class(db_session, x_id, cse_key, performed_by=hod_id)
    first_id = first.assignment.id
    cached_owners = resolver.cached_owners

    async def claimed_meanwhile(db, key):
        # Another process takes the target class right after the holder check.
        async with session_factory() as other:
            other.add(_active_row(y_id, key, hod_id))
            await other.commit()
        return await cached_owners(db, key)

    monkeypatch.setattr(resolver, "cached_owners", claimed_meanwhile)
    with pytest.raises(ClassAlreadyAssigned) as exc:
        await reassignment.reassign_class(db_session, x_id, other_key, performed_by=hod_id)
    assert exc.value.holder_user_id == y_id

    active = (
        await db_session.execute(
            select(ClassAssignment.id).where(
                ClassAssignment.faculty_user_id == x_id,
                ClassAssignment.active.is_(True),
            )
        )
    ).scalars().all()
    assert active == [first_id]
    entries = (await db_session.execute(select(FacultyClassEntry.class_id, FacultyClassEntry.active))).all()
    assert [tuple(e) for e in entries] == [(cse_key.class_id, True)]

    log = await _failed_reassignment_log(db_session)
    assert log.details["step_reached"] == 3


@pytest.mark.asyncio
async def test_failure_after_step_one_keeps_nothing(
    db_session: AsyncSession, make_faculty, make_student, cse_key, other_key, hod_id, monkeypatch
) -> None:
    x = await make_faculty()
    x_id = x.user_id
    first = await reassignment.reassign_class(db_session, x_id, cse_key, performed_by=hod_id)
    first_id = first.assignment.id
    student = await make_student(other_key, "CS001")
    student_id = student.id

    async def broken(*args, **kwargs):
        raise OperationalError("UPDATE students", {}, Exception("disk I/O error"))

    monkeypatch.setattr(reassignment, "_rebind_students", broken)
    with pytest.raises(ReassignmentIncomplete) as exc:
        await reassignment.reassign_class(db_session, x_id, other_key, performed_by=hod_id)
    assert exc.value.step == 4
    assert exc.value.status_code == 500
    assert [p["assignment_id"] for p in exc.value.previous_assignments] == [first_id]

    rows = (
        await db_session.execute(
            select(ClassAssignment.class_id, ClassAssignment.active).where(ClassAssignment.faculty_user_id == x_id)
        )
    ).all()
    assert [tuple(r) for r in rows] == [(cse_key.class_id, True)]
    entries = (await db_session.execute(select(FacultyClassEntry.class_id, FacultyClassEntry.active))).all()
    assert [tuple(e) for e in entries] == [(cse_key.class_id, True)]
    assert await db_session.scalar(select(Student.faculty_user_id).where(Student.id == student_id)) is None

    log = await _failed_reassignment_log(db_session)
    assert log.faculty_user_id == x_id
    assert log.details["step_reached"] == 4
    assert log.details["rolled_back"] is True
    assert [p["assignment_id"] for p in log.details["previous_assignments"]] == [str(first_id)]


@pytest.mark.asyncio
async def test_assignment_added_while_waiting_for_lock_is_refused(
    db_session: AsyncSession, session_factory, make_faculty, cse_key, other_key, hod_id, monkeypatch
) -> None:
    x = await make_faculty()
    x_id = x.user_id
    await reassignment.reassign_class(db_session, x_id, cse_key, performed_by=hod_id)
    third_key = build_key("2023-2027", "2nd Year", 3, "C", "CSE")
    class_key_lock = store.class_key_lock

    @asynccontextmanager
    async def lock_after_new_assignment(*keys):
        async with session_factory() as other:
            other.add(_active_row(x_id, third_key, hod_id))
            await other.commit()
        async with class_key_lock(*keys):
            yield

    monkeypatch.setattr(store, "class_key_lock", lock_after_new_assignment)
    with pytest.raises(ConcurrentAssignmentConflict):
        await reassignment.reassign_class(db_session, x_id, other_key, performed_by=hod_id)

    active = (
        await db_session.execute(
            select(ClassAssignment.class_id).where(
                ClassAssignment.faculty_user_id == x_id,
                ClassAssignment.active.is_(True),
            )
        )
    ).scalars().all()
    assert sorted(active) == sorted([cse_key.class_id, third_key.class_id])
