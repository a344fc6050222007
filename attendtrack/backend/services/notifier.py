import asyncio
import json
import logging
from collections import defaultdict
from typing import Any, Dict, Optional, Set

from ..config.config import settings
from ..db.redis_client import RedisClient, EVENTS_CHANNEL_PREFIX
from ..models.session_models import AttendanceSession, ScanRecord

logger = logging.getLogger(__name__)


def new_scan_event(session: AttendanceSession, record: ScanRecord) -> Dict[str, Any]:
    return {
        "type": "new_scan",
        "courseId": session.course_id,
        "sessionId": str(session.session_id),
        "studentId": record.student_id,
        "scannedAt": record.scanned_at.isoformat(),
    }

def scan_count_event(session: AttendanceSession) -> Dict[str, Any]:
    return {
        "type": "scan_count",
        "courseId": session.course_id,
        "sessionId": str(session.session_id),
        "scanCount": len(session.scans),
    }


class LiveUpdateNotifier:
    """
    Fan-out of attendance events to lecturer views, keyed by course.

    Each process keeps its own subscriber queues. Once a Redis client is
    attached, `publish` goes through Redis pub/sub and every process relays
    the events it receives to its local queues, so a lecturer connected to one
    worker sees scans accepted by another. Without Redis the fan-out stays
    in-process.

    Delivery is best effort and at most once: a subscriber whose queue is full
    simply misses the event and is expected to re-fetch the attendance list.
    """
    def __init__(self, queue_size: int = settings.NOTIFIER_QUEUE_SIZE):
        self._queue_size = queue_size
        self._subscribers: Dict[str, Set[asyncio.Queue]] = defaultdict(set)
        self._redis_client: Optional[RedisClient] = None

    def attach(self, redis_client: RedisClient) -> None:
        self._redis_client = redis_client

    @property
    def shared(self) -> bool:
        """True when events are relayed between processes through Redis."""
        return self._redis_client is not None

    def subscribe(self, course_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers[course_id].add(queue)
        logger.info(f"Live view subscribed to course '{course_id}' ({len(self._subscribers[course_id])} listening).")
        return queue

    def unsubscribe(self, course_id: str, queue: asyncio.Queue) -> None:
        listeners = self._subscribers.get(course_id)
        if not listeners:
            return
        listeners.discard(queue)
        if not listeners:
            del self._subscribers[course_id]

    def subscriber_count(self, course_id: str) -> int:
        return len(self._subscribers.get(course_id, ()))

    def deliver(self, course_id: str, event: Dict[str, Any]) -> int:
        """Queues an event for this process's subscribers. Returns how many got it."""
        delivered = 0
        for queue in list(self._subscribers.get(course_id, ())):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"Dropping '{event.get('type')}' event for course '{course_id}': subscriber queue is full.")
        return delivered

    async def publish(self, course_id: str, event: Dict[str, Any]) -> int:
        """
        Fire-and-forget. Returns the number of local subscribers reached, or,
        when shared, the number of processes that received the event.
        """
        if self._redis_client is None:
            return self.deliver(course_id, event)
        return await self._redis_client.publish_event(course_id, event)

    async def start_relay(self) -> asyncio.Task:
        """
        Subscribes to the events of all courses and starts relaying them to
        local subscribers. The subscription is active once this returns.
        """
        if self._redis_client is None:
            raise RuntimeError("Attach a Redis client before starting the relay.")
        pubsub = await self._redis_client.subscribe_events()
        return asyncio.create_task(self._relay(pubsub))

    async def _relay(self, pubsub) -> None:
        try:
            async for message in pubsub.listen():
                if message["type"] != "pmessage":
                    continue
                course_id = message["channel"][len(EVENTS_CHANNEL_PREFIX):]
                try:
                    event = json.loads(message["data"])
                except ValueError:
                    logger.warning(f"Ignoring undecodable live-update event on '{message['channel']}'.")
                    continue
                self.deliver(course_id, event)
        except Exception:
            logger.error("Live-update relay stopped.", exc_info=True)
        finally:
            await pubsub.aclose()


# One notifier per process; the WebSocket route and the services share it.
notifier = LiveUpdateNotifier()
