import os
import tempfile
import uuid
from typing import AsyncGenerator, Awaitable, Callable, Optional

_DB_DIR = tempfile.mkdtemp(prefix="class-binding-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.auth.models import User
from app.core.class_key import ClassKey, build_key
from app.core.config import settings
from app.core.models import FacultyClassEntry, FacultyProfile, Student
from app.db.session import Base, get_db
from app.main import app


@pytest.fixture()
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh file-backed SQLite database per test so concurrent sessions share one store."""
    path = os.path.join(_DB_DIR, f"{uuid.uuid4().hex}.db")
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{path}",
        echo=False,
        future=True,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    yield factory
    await engine.dispose()
    os.remove(path)


@pytest.fixture()
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
async def client(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app; each request gets its own session."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def make_token(user_id: uuid.UUID, role: str, department: Optional[str] = "CSE") -> str:
    claims = {"user_id": str(user_id), "role": role}
    if department is not None:
        claims["department"] = department
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


@pytest.fixture()
def auth_headers() -> Callable[..., dict]:
    """Bearer header for a caller as the identity layer would issue it."""

    def _headers(user_id: uuid.UUID, role: str, department: Optional[str] = "CSE") -> dict:
        return {"Authorization": f"Bearer {make_token(user_id, role, department)}"}

    return _headers


@pytest.fixture()
def hod_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def cse_key() -> ClassKey:
    return build_key("2023-2027", "2nd Year", 3, "A", "CSE")


@pytest.fixture()
def other_key() -> ClassKey:
    return build_key("2023-2027", "2nd Year", 3, "B", "CSE")


@pytest.fixture()
def make_faculty(db_session: AsyncSession) -> Callable[..., Awaitable[FacultyProfile]]:
    counter = {"n": 0}

    async def _make(
        department: str = "CSE",
        status: str = "active",
        full_name: Optional[str] = None,
        legacy_key: Optional[ClassKey] = None,
    ) -> FacultyProfile:
        counter["n"] += 1
        name = full_name or f"Faculty {counter['n']}"
        email = f"faculty{counter['n']}-{uuid.uuid4().hex[:6]}@college.edu"
        user = User(full_name=name, email=email, role="faculty", department=department)
        db_session.add(user)
        await db_session.flush()
        profile = FacultyProfile(
            user_id=user.id,
            full_name=name,
            email=email,
            department=department,
            status=status,
        )
        if legacy_key is not None:
            profile.is_class_advisor = True
            profile.batch = legacy_key.batch
            profile.year = legacy_key.year.value
            profile.semester = legacy_key.semester
            profile.section = legacy_key.section.value
        db_session.add(profile)
        await db_session.commit()
        await db_session.refresh(profile, attribute_names=["assigned_classes"])
        return profile

    return _make


@pytest.fixture()
def add_cache_entry(db_session: AsyncSession) -> Callable[..., Awaitable[FacultyClassEntry]]:
    """Write an embedded-cache entry directly, bypassing the store, to simulate drift."""

    async def _add(profile: FacultyProfile, key: ClassKey, active: bool = True) -> FacultyClassEntry:
        entry = FacultyClassEntry(
            faculty_id=profile.id,
            class_id=key.class_id,
            department=key.department,
            batch=key.batch,
            year=key.year.value,
            semester=key.semester,
            section=key.section.value,
            active=active,
            assigned_by=profile.user_id,
        )
        profile.assigned_classes.append(entry)
        await db_session.commit()
        return entry

    return _add


@pytest.fixture()
def make_student(db_session: AsyncSession) -> Callable[..., Awaitable[Student]]:
    async def _make(
        key: ClassKey,
        roll_number: str,
        faculty_user_id: Optional[uuid.UUID] = None,
        created_by: Optional[uuid.UUID] = None,
        class_id: Optional[str] = "derive",
    ) -> Student:
        student = Student(
            roll_number=roll_number,
            name=f"Student {roll_number}",
            class_id=key.class_id if class_id == "derive" else class_id,
            department=key.department,
            batch=key.batch,
            year=key.year.value,
            semester=key.semester,
            section=key.section.value,
            faculty_user_id=faculty_user_id,
            status="active",
            created_by=created_by,
        )
        db_session.add(student)
        await db_session.commit()
        return student

    return _make
