import json
import logging
from typing import Any, Dict, List, Optional
from uuid import UUID
import redis.asyncio as redis
import asyncio
from datetime import datetime

from ..models.session_models import AttendanceSession, ScanRecord
from ..modules.clock import to_reference

logger = logging.getLogger(__name__)

# HSETNX and RPUSH run as one script so a student can never be appended twice,
# even when two scans from the same phone race each other.
APPEND_SCAN_IF_ABSENT_LUA = """
if redis.call('HSETNX', KEYS[1], ARGV[1], ARGV[2]) == 1 then
    redis.call('RPUSH', KEYS[2], ARGV[1])
    return 1
end
return 0
"""


def _session_key(session_id) -> str:
    return f"attendance_session:{session_id}"

def _course_index_key(course_id: str) -> str:
    return f"attendance_index:course:{course_id}"

def _scans_key(session_id) -> str:
    return f"attendance_scans:{session_id}"

def _scan_order_key(session_id) -> str:
    return f"attendance_scan_order:{session_id}"

LIVE_INDEX_KEY = "attendance_index:live"

EVENTS_CHANNEL_PREFIX = "attendance_events:"

def _events_channel(course_id: str) -> str:
    return f"{EVENTS_CHANNEL_PREFIX}{course_id}"


class RedisClient:
    """
    Redis-backed store for attendance sessions and their scans.

    Sessions are kept forever (no TTL); expiry is decided by comparing
    `expires_at`, which is also the score of every index entry.
    """

    def __init__(self, pool: redis.ConnectionPool):
        self._redis = redis.Redis(connection_pool=pool, decode_responses=True)
        self._append_scan = self._redis.register_script(APPEND_SCAN_IF_ABSENT_LUA)

    # ===== Session Management =====

    async def create(self, session: AttendanceSession) -> UUID:
        """Stores a new session and indexes it by course and by expiry."""
        score = session.expires_at.timestamp()
        member = str(session.session_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(_session_key(session.session_id), session.model_dump_json(exclude={"scans"}))
            pipe.zadd(_course_index_key(session.course_id), {member: score})
            pipe.zadd(LIVE_INDEX_KEY, {member: score})
            await pipe.execute()
        return session.session_id

    async def get_session(self, session_id: UUID, with_scans: bool = True) -> Optional[AttendanceSession]:
        session_json = await self._redis.get(_session_key(session_id))
        if not session_json:
            return None
        session = AttendanceSession.model_validate_json(session_json)
        if with_scans:
            session.scans = await self.get_scans(session_id)
        return session

    async def _get_sessions(self, session_ids: List[str], with_scans: bool = True) -> List[AttendanceSession]:
        tasks = [self.get_session(UUID(session_id), with_scans=with_scans) for session_id in session_ids]
        sessions = await asyncio.gather(*tasks)
        return [session for session in sessions if session is not None]

    async def find_live(self, course_id: str, now: datetime) -> Optional[AttendanceSession]:
        """Returns the most recently issued session of the course that has not expired yet."""
        session_ids = await self._redis.zrangebyscore(_course_index_key(course_id), f"({now.timestamp()}", "+inf")
        if not session_ids:
            return None
        sessions = await self._get_sessions(session_ids, with_scans=False)
        live = [session for session in sessions if session.is_live(now)]
        if not live:
            return None
        return max(live, key=lambda session: session.issued_at)

    async def find_by_window(self, course_id: str, issued_at: datetime, expires_at: datetime) -> Optional[AttendanceSession]:
        """Finds the session of a course whose validity window is exactly [issued_at, expires_at]."""
        score = expires_at.timestamp()
        session_ids = await self._redis.zrangebyscore(_course_index_key(course_id), score, score)
        for session in await self._get_sessions(session_ids, with_scans=False):
            if session.issued_at == issued_at and session.expires_at == expires_at:
                return session
        return None

    async def get_sessions_for_course(self, course_id: str) -> List[AttendanceSession]:
        """All sessions ever generated for a course, scans included, newest expiry first."""
        session_ids = await self._redis.zrevrange(_course_index_key(course_id), 0, -1)
        if not session_ids:
            return []
        return await self._get_sessions(session_ids)

    async def get_live_sessions(self, now: datetime) -> List[AttendanceSession]:
        session_ids = await self._redis.zrangebyscore(LIVE_INDEX_KEY, f"({now.timestamp()}", "+inf")
        if not session_ids:
            return []
        return await self._get_sessions(session_ids)

    async def prune_live_index(self, now: datetime) -> int:
        """Drops expired sessions from the live index. The sessions themselves stay."""
        return await self._redis.zremrangebyscore(LIVE_INDEX_KEY, "-inf", now.timestamp())

    # ===== Scan Management =====

    async def append_scan_if_absent(self, session_id: UUID, student_id: str, scanned_at: datetime) -> bool:
        """
        Atomically records a scan unless the student already has one in this session.
        Returns True when the scan was appended, False when it already existed.
        """
        added = await self._append_scan(
            keys=[_scans_key(session_id), _scan_order_key(session_id)],
            args=[student_id, to_reference(scanned_at).isoformat()],
        )
        return int(added) == 1

    async def get_scans(self, session_id: UUID) -> List[ScanRecord]:
        """Scans of a session in arrival order."""
        student_ids = await self._redis.lrange(_scan_order_key(session_id), 0, -1)
        if not student_ids:
            return []
        scanned_ats = await self._redis.hmget(_scans_key(session_id), student_ids)
        records = []
        for student_id, scanned_at in zip(student_ids, scanned_ats):
            if scanned_at is None:
                logger.warning(f"Scan order for session {session_id} lists '{student_id}' without a scan entry.")
                continue
            records.append(ScanRecord(student_id=student_id, scanned_at=datetime.fromisoformat(scanned_at)))
        return records

    # ===== Live Update Events =====

    async def publish_event(self, course_id: str, event: Dict[str, Any]) -> int:
        """Broadcasts a live-update event to every worker. Returns how many workers received it."""
        return await self._redis.publish(_events_channel(course_id), json.dumps(event))

    async def subscribe_events(self) -> redis.client.PubSub:
        """Opens a subscription to the events of every course."""
        pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
        await pubsub.psubscribe(f"{EVENTS_CHANNEL_PREFIX}*")
        return pubsub
