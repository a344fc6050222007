# tests/conftest.py
import asyncio
import sys
import uuid
from datetime import datetime, timedelta

import httpx
import pytest
import pytest_asyncio

from attendtrack.backend.models.db_models import Course, User
from attendtrack.backend.models.session_models import AttendanceSession
from attendtrack.backend.modules.clock import Clock, REFERENCE_TIMEZONE
from attendtrack.backend.api.auth import create_access_token
from attendtrack.backend.api.utilities.limiter import limiter
from attendtrack.backend.main import app

# This is the crucial fix for Windows asyncio issues with pytest.
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


class FixedClock(Clock):
    """A clock that only moves when a test moves it."""
    def __init__(self, now: datetime):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)


def reference_time(hour: int, minute: int = 0, second: int = 0) -> datetime:
    """An instant on the test day, in the reference timezone."""
    return datetime(2024, 3, 4, hour, minute, second, tzinfo=REFERENCE_TIMEZONE)


def make_session(course: Course, issued_at: datetime, minutes: int = 60, **overrides) -> AttendanceSession:
    fields = dict(
        session_id=uuid.uuid4(),
        course_id=course.course_id,
        course_code=course.course_code,
        course_name=course.course_name,
        lecturer_id=course.lecturer_id,
        issued_at=issued_at,
        expires_at=issued_at + timedelta(minutes=minutes),
    )
    fields.update(overrides)
    return AttendanceSession(**fields)


# --- Shared Fixtures ---

@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(reference_time(9, 0))

@pytest.fixture
def lecturer() -> User:
    return User(user_id="L001", first_name="Ada", last_name="Lovelace", id_number="EMP-001", role="Lecturer")

@pytest.fixture
def student() -> User:
    return User(user_id="S001", first_name="Grace", last_name="Hopper", id_number="2021001", role="Student")

@pytest.fixture
def course(lecturer, student) -> Course:
    return Course(
        course_id="C-CS101", course_code="CS101", course_name="Intro to Computing",
        lecturer_id=lecturer.user_id, enrolled_student_ids=[student.user_id, "S002"]
    )

@pytest.fixture
def other_course(lecturer, student) -> Course:
    return Course(
        course_id="C-MATH201", course_code="MATH201", course_name="Linear Algebra",
        lecturer_id="L002", enrolled_student_ids=[student.user_id]
    )


# --- API Helpers ---

def auth_headers(user_id: str, role: str) -> dict:
    token = create_access_token({"user_id": user_id, "role": role}, expires_delta=timedelta(minutes=15))
    return {"Authorization": f"Bearer {token}"}

@pytest_asyncio.fixture
async def api_client():
    """An httpx client bound to the app in-process. The lifespan does not run, so services must be overridden."""
    limiter.enabled = False
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test/api/v1") as client:
        yield client
    app.dependency_overrides.clear()
    limiter.enabled = True
