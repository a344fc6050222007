import logging
from datetime import timedelta
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel

from ..config.config import settings
from ..db.redis_client import RedisClient
from ..db.db_client import AsyncPostgresClient
from ..models.db_models import Course
from ..models.session_models import AttendanceSession
from ..modules.clock import Clock
from ..modules.session_codec import SessionCodec
from .errors import ServiceError, InvalidArgumentError, AuthorizationError, NotFoundError

logger = logging.getLogger(__name__)


class GeneratedSession(BaseModel):
    """What a lecturer gets back from a "generate QR" action."""
    payload: str
    session: AttendanceSession
    reused: bool = False


async def load_course(db_client: AsyncPostgresClient, course_id: str) -> Course:
    """Fetches a course, translating absence and database failures into service errors."""
    try:
        course = await db_client.get_course_by_id(course_id)
    except Exception as e:
        logger.error(f"Database error while loading course '{course_id}'.", exc_info=True)
        raise ServiceError("A server error occurred while loading the course.") from e
    if course is None:
        raise NotFoundError(f"Course '{course_id}' was not found.")
    return course


class SessionGenerator:
    """
    Creates attendance sessions for lecturer "generate QR" requests.

    While a course still has a live session, that session's payload is handed
    back unchanged so QR codes already on screen or on paper stay valid.
    """
    def __init__(self, redis_client: RedisClient, db_client: AsyncPostgresClient, clock: Clock, codec: SessionCodec):
        self.redis_client = redis_client
        self.db_client = db_client
        self.clock = clock
        self.codec = codec

    @staticmethod
    def _resolve_duration(duration_minutes: Optional[int]) -> timedelta:
        if duration_minutes is None:
            duration_minutes = settings.SESSION_DURATION_MINUTES
        if duration_minutes <= 0 or duration_minutes > settings.MAX_SESSION_DURATION_MINUTES:
            raise InvalidArgumentError(
                f"Session duration must be between 1 and {settings.MAX_SESSION_DURATION_MINUTES} minutes."
            )
        return timedelta(minutes=duration_minutes)

    async def generate(self, course_id: str, lecturer_id: str, duration_minutes: Optional[int] = None) -> GeneratedSession:
        duration = self._resolve_duration(duration_minutes)

        course = await load_course(self.db_client, course_id)
        if course.lecturer_id != lecturer_id:
            logger.warning(f"Lecturer '{lecturer_id}' tried to generate a QR code for course '{course_id}' they do not teach.")
            raise AuthorizationError("You are not the assigned lecturer for this course.")

        now = self.clock.now().replace(microsecond=0)

        # Not atomic with the create below; two racing requests may both create a session, which is harmless.
        try:
            existing_session = await self.redis_client.find_live(course_id, now)
        except Exception as e:
            logger.error(f"Redis error while looking up the live session of course '{course_id}'.", exc_info=True)
            raise ServiceError("A server error occurred while generating the QR code.") from e

        if existing_session:
            logger.info(f"Course '{course_id}' already has live session {existing_session.session_id}; reusing its QR code.")
            return GeneratedSession(payload=self.codec.encode(existing_session), session=existing_session, reused=True)

        new_session = AttendanceSession(
            session_id=uuid4(),
            course_id=course.course_id,
            course_code=course.course_code,
            course_name=course.course_name,
            lecturer_id=lecturer_id,
            issued_at=now,
            expires_at=now + duration,
        )

        try:
            await self.redis_client.create(new_session)
        except Exception as e:
            logger.error(f"Error saving attendance session {new_session.session_id} to Redis.", exc_info=True)
            raise ServiceError("A server error occurred while generating the QR code.") from e

        logger.info(f"Attendance session {new_session.session_id} created for course '{course_id}', expires at {new_session.expires_at.isoformat()}.")
        return GeneratedSession(payload=self.codec.encode(new_session), session=new_session)
