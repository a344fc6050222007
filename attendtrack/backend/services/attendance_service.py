import logging
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel

from ..config.config import settings
from ..db.redis_client import RedisClient
from ..db.db_client import AsyncPostgresClient
from ..models.db_models import Course, User
from ..models.session_models import AttendanceSession, ScanRecord
from ..modules.clock import Clock, remaining_time
from ..modules.session_codec import SessionCodec
from .errors import ServiceError, AuthorizationError, InvalidArgumentError
from .session_generator import load_course

logger = logging.getLogger(__name__)


# --- Enriched Models for API Responses ---
class EnrichedScanRecord(ScanRecord):
    """Scan record enriched with the student's user data, when the user is known."""
    student: Optional[User] = None

    def matches(self, search: str) -> bool:
        needle = search.strip().lower()
        if self.student is None:
            return needle in self.student_id.lower()
        return needle in self.student.full_name.lower() or needle in self.student.id_number.lower()


class SessionAttendance(BaseModel):
    session_id: UUID
    course_id: str
    course_code: str
    course_name: str
    issued_at: datetime
    expires_at: datetime
    scans: List[EnrichedScanRecord]


class LiveSessionStatus(BaseModel):
    session: AttendanceSession
    payload: str
    remaining_time: str


class AttendanceService:
    """
    Read side for lecturer views: the attendance list of a course, the live
    session with its countdown, and the recent-scan count used to reconcile
    the "new scans" badge when push events were missed.
    """
    def __init__(self, redis_client: RedisClient, db_client: AsyncPostgresClient, clock: Clock, codec: SessionCodec):
        self.redis_client = redis_client
        self.db_client = db_client
        self.clock = clock
        self.codec = codec

    async def get_owned_course(self, course_id: str, lecturer_id: str) -> Course:
        course = await load_course(self.db_client, course_id)
        if course.lecturer_id != lecturer_id:
            raise AuthorizationError("You are not authorized to view attendance for this course.")
        return course

    async def _get_sessions(self, course_id: str) -> List[AttendanceSession]:
        try:
            return await self.redis_client.get_sessions_for_course(course_id)
        except Exception as e:
            logger.error(f"Redis error while loading sessions of course '{course_id}'.", exc_info=True)
            raise ServiceError("A server error occurred while loading attendance records.") from e

    async def _enrich_scans(self, sessions: List[AttendanceSession]) -> dict:
        student_ids = {scan.student_id for session in sessions for scan in session.scans}
        if not student_ids:
            return {}
        try:
            users = await self.db_client.get_users(list(student_ids))
        except Exception as e:
            logger.error("Database error while enriching scans.", exc_info=True)
            raise ServiceError("A database error occurred while fetching user information.") from e
        user_map = {user.user_id: user for user in users}
        missing = student_ids - user_map.keys()
        if missing:
            logger.warning(f"User data not found for {len(missing)} scanning student(s): {sorted(missing)}.")
        return user_map

    async def get_course_attendance(self, course_id: str, lecturer_id: str, search: Optional[str] = None) -> List[SessionAttendance]:
        """
        Every session of the course, newest first, with enriched scans.
        With `search`, only scans whose student name or ID number matches are
        kept and sessions left empty are dropped.
        """
        await self.get_owned_course(course_id, lecturer_id)
        sessions = await self._get_sessions(course_id)
        user_map = await self._enrich_scans(sessions)

        result = []
        for session in sorted(sessions, key=lambda s: s.issued_at, reverse=True):
            scans = [
                EnrichedScanRecord(**scan.model_dump(), student=user_map.get(scan.student_id))
                for scan in session.scans
            ]
            if search:
                scans = [scan for scan in scans if scan.matches(search)]
                if not scans:
                    continue
            result.append(SessionAttendance(**session.model_dump(exclude={"scans", "lecturer_id"}), scans=scans))
        return result

    async def get_live_session(self, course_id: str, lecturer_id: str) -> Optional[LiveSessionStatus]:
        await self.get_owned_course(course_id, lecturer_id)
        now = self.clock.now()
        try:
            session = await self.redis_client.find_live(course_id, now)
        except Exception as e:
            logger.error(f"Error getting live session for course '{course_id}'.", exc_info=True)
            raise ServiceError("A server error occurred while loading the live session.") from e
        if session is None:
            return None
        return LiveSessionStatus(
            session=session,
            payload=self.codec.encode(session),
            remaining_time=remaining_time(session.expires_at, now),
        )

    async def count_recent_scans(self, course_id: str, lecturer_id: str, window_minutes: Optional[int] = None) -> int:
        """Number of scans for the course recorded within the last `window_minutes`."""
        if window_minutes is None:
            window_minutes = settings.RECENT_SCAN_WINDOW_MINUTES
        if window_minutes <= 0:
            raise InvalidArgumentError("The recent-scan window must be at least one minute.")

        await self.get_owned_course(course_id, lecturer_id)
        since = self.clock.now() - timedelta(minutes=window_minutes)
        sessions = await self._get_sessions(course_id)
        return sum(1 for session in sessions for scan in session.scans if scan.scanned_at >= since)
