import pytest
from unittest.mock import AsyncMock

from attendtrack.backend.tasks.cron import reconcile_live_sessions_task
from attendtrack.backend.services.notifier import LiveUpdateNotifier
from attendtrack.backend.models.session_models import ScanRecord
from tests.conftest import make_session, reference_time


@pytest.fixture
def live_notifier() -> LiveUpdateNotifier:
    return LiveUpdateNotifier(queue_size=10)


@pytest.mark.asyncio
async def test_reconcile_publishes_scan_counts_to_listening_courses(clock, course, other_course, live_notifier):
    clock.current = reference_time(9, 30)
    watched = make_session(course, reference_time(9, 0), scans=[
        ScanRecord(student_id="S001", scanned_at=reference_time(9, 5)),
    ])
    unwatched = make_session(other_course, reference_time(9, 0))
    mock_redis_client = AsyncMock()
    mock_redis_client.prune_live_index.return_value = 1
    mock_redis_client.get_live_sessions.return_value = [watched, unwatched]
    queue = live_notifier.subscribe(course.course_id)

    await reconcile_live_sessions_task(mock_redis_client, live_notifier, clock)

    mock_redis_client.prune_live_index.assert_awaited_once_with(reference_time(9, 30))
    event = queue.get_nowait()
    assert event["type"] == "scan_count"
    assert event["sessionId"] == str(watched.session_id)
    assert event["scanCount"] == 1
    assert queue.empty()


@pytest.mark.asyncio
async def test_reconcile_survives_redis_failure(clock, course, live_notifier):
    mock_redis_client = AsyncMock()
    mock_redis_client.prune_live_index.side_effect = ConnectionError("redis down")
    queue = live_notifier.subscribe(course.course_id)

    await reconcile_live_sessions_task(mock_redis_client, live_notifier, clock)

    mock_redis_client.get_live_sessions.assert_not_called()
    assert queue.empty()


@pytest.mark.asyncio
async def test_reconcile_publishes_every_live_session_when_shared(clock, course, other_course):
    """Listeners may sit in other workers, so a shared notifier cannot skip unwatched courses."""
    sessions = [make_session(course, reference_time(9, 0)), make_session(other_course, reference_time(9, 0))]
    mock_redis_client = AsyncMock()
    mock_redis_client.prune_live_index.return_value = 0
    mock_redis_client.get_live_sessions.return_value = sessions
    shared_notifier = LiveUpdateNotifier()
    shared_notifier.attach(mock_redis_client)

    await reconcile_live_sessions_task(mock_redis_client, shared_notifier, clock)

    published = [call.args for call in mock_redis_client.publish_event.await_args_list]
    assert [course_id for course_id, _ in published] == [course.course_id, other_course.course_id]
    assert all(event["type"] == "scan_count" for _, event in published)
