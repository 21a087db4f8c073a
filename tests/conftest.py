# tests/conftest.py
import os

# Settings are read at import time, so the environment must be in place first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-music-portal")
os.environ.setdefault("CACHE_ENABLED", "false")
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import date, timedelta
from uuid import UUID

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from music_portal.core.database import get_db
from music_portal.main import app
from music_portal.models import Base, LessonCategory, UserRole
from music_portal.routers.deps import get_drive_client_factory
from music_portal.routers.meet_and_greet import public_form_limiter
from music_portal.services.auth_service import AuthService, login_limiter
from music_portal.services.config_service import (
    InstrumentService, LessonTypeService, LocationService, RoomService, TermService,
)
from music_portal.services.family_service import FamilyService
from music_portal.services.google_drive_service import drive_limiter
from music_portal.services.parent_service import ParentService
from music_portal.services.student_service import StudentService
from music_portal.services.teacher_service import TeacherService

from .utils import PASSWORD, FakeDriveClient, auth_headers


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_rate_limiters():
    limiters = (login_limiter, drive_limiter, public_form_limiter)
    for limiter in limiters:
        limiter.reset()
    yield
    for limiter in limiters:
        limiter.reset()


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def drive_client():
    return FakeDriveClient()


@pytest.fixture
async def client(session_factory, drive_client):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_drive_client_factory] = lambda: (lambda credentials: drive_client)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ============================================================================
# SCHOOL DATA
# ============================================================================

@pytest.fixture
async def school(db):
    result = await AuthService(db).create_school({
        "name": "Harmony Music School",
        "slug": "harmony",
        "timezone": "UTC",
        "admin": {
            "email": "admin@harmony-music.com",
            "password": PASSWORD,
            "first_name": "Ada",
            "last_name": "Admin",
        },
    })
    admin = await AuthService(db).get(UUID(result["admin_user_id"]))
    return {"id": admin.school_id, "slug": "harmony", "admin": admin}


@pytest.fixture
def admin_headers(school):
    return auth_headers(school["admin"])


@pytest.fixture
async def teacher(db, school):
    return await TeacherService(db, school["id"]).create_teacher({
        "email": "tina@harmony-music.com",
        "password": PASSWORD,
        "first_name": "Tina",
        "last_name": "Teacher",
    })


@pytest.fixture
def teacher_headers(teacher):
    return auth_headers(teacher.user)


@pytest.fixture
async def family(db, school):
    return await FamilyService(db, school["id"]).create_family({"name": "Smith Family"})


@pytest.fixture
async def parent(db, school, family):
    return await ParentService(db, school["id"]).create_parent({
        "email": "sam@smith-music.com",
        "password": PASSWORD,
        "first_name": "Sam",
        "last_name": "Smith",
        "family_id": family.id,
    })


@pytest.fixture
def parent_headers(parent):
    return auth_headers(parent.user)


@pytest.fixture
async def student(db, school, family):
    return await StudentService(db, school["id"]).create_student({
        "first_name": "Mia",
        "last_name": "Smith",
        "birth_date": date(2015, 6, 1),
        "family_id": family.id,
    })


@pytest.fixture
async def student_headers(db, school, student):
    """A STUDENT login linked to Mia"""
    user = await AuthService(db).create_user(
        school["id"], "mia@smith-music.com", PASSWORD, "Mia", "Smith", UserRole.STUDENT
    )
    student.user_id = user.id
    await db.commit()
    return auth_headers(user)


@pytest.fixture
async def setup(db, school):
    """A ten week term starting next week, one room, one instrument and a lesson type per category"""
    school_id = school["id"]
    start = date.today() + timedelta(days=7)
    term = await TermService(db, school_id).create_term({
        "name": "Term 1", "start_date": start, "end_date": start + timedelta(weeks=10) - timedelta(days=1),
    })
    location = await LocationService(db, school_id).create_location({"name": "Main Campus"})
    room = await RoomService(db, school_id).create_room({"location_id": location.id, "name": "Studio A", "capacity": 8})
    instrument = await InstrumentService(db, school_id).create_instrument({"name": "Piano"})
    types = LessonTypeService(db, school_id)
    return {
        "term": term,
        "location": location,
        "room": room,
        "instrument": instrument,
        "individual": await types.create_lesson_type(
            {"name": "Private", "type": LessonCategory.INDIVIDUAL, "default_duration": 45}
        ),
        "group": await types.create_lesson_type(
            {"name": "Group", "type": LessonCategory.GROUP, "default_duration": 60}
        ),
        "hybrid": await types.create_lesson_type(
            {"name": "Hybrid", "type": LessonCategory.HYBRID, "default_duration": 60}
        ),
    }


@pytest.fixture
def lesson_payload(setup, teacher):
    def build(**overrides):
        payload = {
            "name": "Piano Basics",
            "lesson_type_id": str(setup["group"].id),
            "term_id": str(setup["term"].id),
            "teacher_id": str(teacher.id),
            "room_id": str(setup["room"].id),
            "instrument_id": str(setup["instrument"].id),
            "day_of_week": 2,
            "start_time": "16:00",
            "end_time": "17:00",
            "max_students": 4,
        }
        payload.update(overrides)
        return payload
    return build
