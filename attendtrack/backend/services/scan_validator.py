import logging
from datetime import datetime
from enum import Enum
from typing import Optional, Union
from uuid import UUID

from pydantic import BaseModel

from ..db.redis_client import RedisClient
from ..db.db_client import AsyncPostgresClient
from ..models.db_models import Course
from ..models.session_models import QRPayload, ScanRecord
from ..modules.clock import Clock
from ..modules.session_codec import SessionCodec
from .errors import ServiceError
from .notifier import LiveUpdateNotifier, new_scan_event
from .session_generator import load_course

logger = logging.getLogger(__name__)


class ScanState(str, Enum):
    """Progress of a single scan attempt through the gates."""
    RECEIVED = "received"
    DECODED = "decoded"
    COURSE_MATCHED = "course_matched"
    ENROLLMENT_VERIFIED = "enrollment_verified"
    NOT_EXPIRED = "not_expired"
    NOT_DUPLICATE = "not_duplicate"
    ACCEPTED = "accepted"


class ScanStatus(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class RejectionReason(str, Enum):
    MALFORMED_CODE = "malformed_code"
    INVALID_SIGNATURE = "invalid_signature"
    WRONG_COURSE = "wrong_course"
    NOT_ENROLLED = "not_enrolled"
    EXPIRED = "expired"
    SESSION_NOT_FOUND = "session_not_found"
    ALREADY_RECORDED = "already_recorded"


class ScanOutcome(BaseModel):
    """
    Result of a scan attempt. Rejections are ordinary results, not errors;
    `state` is the last gate the scan passed.
    """
    status: ScanStatus
    state: ScanState
    reason: Optional[RejectionReason] = None
    message: str
    course_id: Optional[str] = None
    session_id: Optional[UUID] = None
    record: Optional[ScanRecord] = None

    @property
    def accepted(self) -> bool:
        return self.status == ScanStatus.ACCEPTED


def _reject(state: ScanState, reason: RejectionReason, message: str, course_id: Optional[str] = None,
            session_id: Optional[UUID] = None) -> ScanOutcome:
    return ScanOutcome(
        status=ScanStatus.REJECTED, state=state, reason=reason, message=message,
        course_id=course_id, session_id=session_id
    )


def check_gates(payload: QRPayload, course: Course, student_id: str, now: datetime) -> Optional[ScanOutcome]:
    """
    Runs the course-identity, enrollment and expiry gates, in that order.

    `course` is the course the student opened before scanning. Returns the
    rejection of the first failing gate, or None when all three pass. Performs
    no I/O.
    """
    if payload.course_id != course.course_id:
        return _reject(
            ScanState.DECODED, RejectionReason.WRONG_COURSE,
            f"This QR code is for {payload.course_code}. You are trying to mark attendance for {course.course_code}.",
            course_id=course.course_id,
        )

    if not course.is_enrolled(student_id):
        return _reject(
            ScanState.COURSE_MATCHED, RejectionReason.NOT_ENROLLED,
            f"You are not enrolled in {course.course_code}. Attendance cannot be marked.",
            course_id=course.course_id,
        )

    # Both sides are aware datetimes, so this compares absolute instants.
    if now > payload.expires_at:
        return _reject(
            ScanState.ENROLLMENT_VERIFIED, RejectionReason.EXPIRED,
            "This QR code has expired. Please ask your lecturer to generate a new one.",
            course_id=course.course_id,
        )

    return None


class ScanValidator:
    """
    Decides whether a scanned QR code becomes an attendance record.

    Each attempt is evaluated on its own against current server state. Gate
    order matters: the first failing gate determines the reason the student
    sees.
    """
    def __init__(self, redis_client: RedisClient, db_client: AsyncPostgresClient, clock: Clock,
                 codec: SessionCodec, notifier: LiveUpdateNotifier):
        self.redis_client = redis_client
        self.db_client = db_client
        self.clock = clock
        self.codec = codec
        self.notifier = notifier

    async def validate_scan(self, raw_payload: Union[str, bytes], student_id: str, intended_course_id: str) -> ScanOutcome:
        logger.info(f"Student '{student_id}' scanned a QR code for course '{intended_course_id}'.")

        decoded = self.codec.safe_decode(raw_payload)
        if not decoded.ok:
            return _reject(ScanState.RECEIVED, RejectionReason.MALFORMED_CODE, f"Invalid QR code: {decoded.error}")
        payload = decoded.payload

        if not self.codec.verify_signature(payload):
            logger.warning(f"Student '{student_id}' presented a QR code with a bad signature for course '{payload.course_id}'.")
            return _reject(
                ScanState.DECODED, RejectionReason.INVALID_SIGNATURE,
                "This QR code could not be verified. Please ask your lecturer to generate a new one.",
            )

        course = await load_course(self.db_client, intended_course_id)
        now = self.clock.now()

        rejection = check_gates(payload, course, student_id, now)
        if rejection:
            logger.info(f"Scan by '{student_id}' rejected: {rejection.reason.value}.")
            return rejection

        try:
            session = await self.redis_client.find_by_window(payload.course_id, payload.generated_at, payload.expires_at)
        except Exception as e:
            logger.error(f"Redis error while looking up the session for course '{payload.course_id}'.", exc_info=True)
            raise ServiceError("A server error occurred while recording attendance.") from e

        if not session:
            logger.warning(f"Scan by '{student_id}' references no stored session for course '{payload.course_id}'.")
            return _reject(
                ScanState.NOT_EXPIRED, RejectionReason.SESSION_NOT_FOUND,
                "This QR code does not match any attendance session. Please ask your lecturer for the current code.",
                course_id=course.course_id,
            )

        record = ScanRecord(student_id=student_id, scanned_at=now)
        try:
            appended = await self.redis_client.append_scan_if_absent(session.session_id, student_id, now)
        except Exception as e:
            logger.error(f"Redis error while recording scan of '{student_id}' in session {session.session_id}.", exc_info=True)
            raise ServiceError("A server error occurred while recording attendance.") from e

        if not appended:
            logger.info(f"Student '{student_id}' already has a scan in session {session.session_id}.")
            return _reject(
                ScanState.NOT_EXPIRED, RejectionReason.ALREADY_RECORDED,
                "Your attendance for this session has already been recorded.",
                course_id=course.course_id, session_id=session.session_id,
            )

        logger.info(f"Attendance of '{student_id}' recorded in session {session.session_id}.")
        try:
            await self.notifier.publish(session.course_id, new_scan_event(session, record))
        except Exception:
            # The scan is already stored; a missed event must not change the outcome.
            logger.error(f"Failed to publish new_scan event for session {session.session_id}.", exc_info=True)

        return ScanOutcome(
            status=ScanStatus.ACCEPTED, state=ScanState.ACCEPTED,
            message="Attendance marked successfully.",
            course_id=course.course_id, session_id=session.session_id, record=record,
        )
