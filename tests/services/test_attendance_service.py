import pytest
import pytest_asyncio
from unittest.mock import AsyncMock

from attendtrack.backend.services.attendance_service import AttendanceService, SessionAttendance
from attendtrack.backend.services.errors import ServiceError, AuthorizationError, InvalidArgumentError, NotFoundError
from attendtrack.backend.models.db_models import User
from attendtrack.backend.models.session_models import ScanRecord
from attendtrack.backend.modules.session_codec import SessionCodec
from tests.conftest import make_session, reference_time

# --- Test Fixtures ---

@pytest.fixture
def second_student() -> User:
    return User(user_id="S002", first_name="Alan", last_name="Turing", id_number="2021002", role="Student")

@pytest.fixture
def monday_sessions(course, student, second_student):
    """An expired 08:00 session and a live 09:00 session, both with scans."""
    morning = make_session(course, reference_time(8, 0), scans=[
        ScanRecord(student_id=student.user_id, scanned_at=reference_time(8, 5)),
    ])
    live = make_session(course, reference_time(9, 0), scans=[
        ScanRecord(student_id=second_student.user_id, scanned_at=reference_time(9, 10)),
        ScanRecord(student_id=student.user_id, scanned_at=reference_time(9, 27)),
    ])
    return morning, live

@pytest_asyncio.fixture
async def service_instance(clock, course, student, second_student, monday_sessions):
    """Creates an AttendanceService with mocked clients; the clock reads 09:30."""
    clock.current = reference_time(9, 30)
    mock_redis_client = AsyncMock()
    mock_db_client = AsyncMock()
    mock_db_client.get_course_by_id.return_value = course
    mock_db_client.get_users.return_value = [student, second_student]
    mock_redis_client.get_sessions_for_course.return_value = list(monday_sessions)
    service = AttendanceService(redis_client=mock_redis_client, db_client=mock_db_client, clock=clock, codec=SessionCodec())
    return service, mock_redis_client, mock_db_client

# --- Test Scenarios ---

@pytest.mark.asyncio
class TestAttendanceService:

    async def test_course_attendance_is_newest_first_with_enriched_scans(self, service_instance, course, lecturer, monday_sessions):
        service, _, _ = service_instance
        morning, live = monday_sessions

        result = await service.get_course_attendance(course.course_id, lecturer.user_id)

        assert [item.session_id for item in result] == [live.session_id, morning.session_id]
        assert all(isinstance(item, SessionAttendance) for item in result)
        assert [scan.student.full_name for scan in result[0].scans] == ["Alan Turing", "Grace Hopper"]

    async def test_search_by_name_keeps_matching_scans_only(self, service_instance, course, lecturer, monday_sessions):
        service, _, _ = service_instance
        _, live = monday_sessions

        result = await service.get_course_attendance(course.course_id, lecturer.user_id, search="turing")

        assert len(result) == 1
        assert result[0].session_id == live.session_id
        assert [scan.student_id for scan in result[0].scans] == ["S002"]

    async def test_search_by_id_number(self, service_instance, course, lecturer):
        service, _, _ = service_instance
        result = await service.get_course_attendance(course.course_id, lecturer.user_id, search="2021001")
        assert len(result) == 2
        assert all(scan.student_id == "S001" for item in result for scan in item.scans)

    async def test_search_without_matches_returns_nothing(self, service_instance, course, lecturer):
        service, _, _ = service_instance
        assert await service.get_course_attendance(course.course_id, lecturer.user_id, search="nobody") == []

    async def test_scans_of_unknown_users_are_kept(self, service_instance, course, lecturer, student):
        service, _, mock_db_client = service_instance
        mock_db_client.get_users.return_value = [student]

        result = await service.get_course_attendance(course.course_id, lecturer.user_id)

        unknown = [scan for scan in result[0].scans if scan.student_id == "S002"]
        assert len(unknown) == 1
        assert unknown[0].student is None

    async def test_course_without_sessions(self, service_instance, course, lecturer):
        service, mock_redis_client, mock_db_client = service_instance
        mock_redis_client.get_sessions_for_course.return_value = []
        assert await service.get_course_attendance(course.course_id, lecturer.user_id) == []
        mock_db_client.get_users.assert_not_called()

    async def test_other_lecturer_cannot_read_attendance(self, service_instance, course):
        service, mock_redis_client, _ = service_instance
        with pytest.raises(AuthorizationError):
            await service.get_course_attendance(course.course_id, "L999")
        mock_redis_client.get_sessions_for_course.assert_not_called()

    async def test_unknown_course_raises_not_found(self, service_instance, lecturer):
        service, _, mock_db_client = service_instance
        mock_db_client.get_course_by_id.return_value = None
        with pytest.raises(NotFoundError):
            await service.get_course_attendance("C-NOPE", lecturer.user_id)

    async def test_redis_failure_is_wrapped(self, service_instance, course, lecturer):
        service, mock_redis_client, _ = service_instance
        mock_redis_client.get_sessions_for_course.side_effect = ConnectionError("redis down")
        with pytest.raises(ServiceError):
            await service.get_course_attendance(course.course_id, lecturer.user_id)

    # --- Live Session ---

    async def test_live_session_includes_payload_and_countdown(self, service_instance, course, lecturer, monday_sessions):
        service, mock_redis_client, _ = service_instance
        _, live = monday_sessions
        mock_redis_client.find_live.return_value = live

        status = await service.get_live_session(course.course_id, lecturer.user_id)

        assert status.session == live
        assert status.payload == service.codec.encode(live)
        assert status.remaining_time == "30 minutes"

    async def test_no_live_session(self, service_instance, course, lecturer):
        service, mock_redis_client, _ = service_instance
        mock_redis_client.find_live.return_value = None
        assert await service.get_live_session(course.course_id, lecturer.user_id) is None

    # --- Recent Scans ---

    async def test_count_recent_scans_uses_default_window(self, service_instance, course, lecturer):
        """At 09:30 only the 09:27 scan falls inside the last five minutes."""
        service, _, _ = service_instance
        assert await service.count_recent_scans(course.course_id, lecturer.user_id) == 1

    async def test_count_recent_scans_with_wider_window(self, service_instance, course, lecturer):
        service, _, _ = service_instance
        assert await service.count_recent_scans(course.course_id, lecturer.user_id, window_minutes=30) == 2
        assert await service.count_recent_scans(course.course_id, lecturer.user_id, window_minutes=120) == 3

    async def test_count_recent_scans_rejects_non_positive_window(self, service_instance, course, lecturer):
        service, _, _ = service_instance
        with pytest.raises(InvalidArgumentError):
            await service.count_recent_scans(course.course_id, lecturer.user_id, window_minutes=0)
