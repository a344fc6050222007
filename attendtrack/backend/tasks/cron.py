import logging

from ..db.redis_client import RedisClient
from ..modules.clock import Clock
from ..services.notifier import LiveUpdateNotifier, scan_count_event

logger = logging.getLogger(__name__)


async def reconcile_live_sessions_task(redis_client: RedisClient, notifier: LiveUpdateNotifier, clock: Clock):
    """
    Periodic backstop for the push channel: publishes a scan-count snapshot for
    every live session so lecturer views that missed `new_scan` events catch up.
    """
    now = clock.now()
    try:
        pruned = await redis_client.prune_live_index(now)
        if pruned:
            logger.info(f"Removed {pruned} expired session(s) from the live index.")
        sessions = await redis_client.get_live_sessions(now)
    except Exception as e:
        logger.error(f"Failed to load live sessions for reconciliation: {e}", exc_info=True)
        return

    for session in sessions:
        # Listeners of a shared notifier may sit in other workers.
        if not notifier.shared and notifier.subscriber_count(session.course_id) == 0:
            continue
        try:
            await notifier.publish(session.course_id, scan_count_event(session))
        except Exception as e:
            logger.error(f"Failed to publish scan count for session {session.session_id}: {e}", exc_info=True)
