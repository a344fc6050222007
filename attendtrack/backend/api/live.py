import asyncio
import logging
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from ..services.errors import ServiceError, AuthorizationError, NotFoundError
from ..services.notifier import LiveUpdateNotifier
from ..services.attendance_service import AttendanceService
from .auth import decode_access_token, InvalidTokenError
from .dependencies import get_attendance_service, get_notifier

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Live Updates"])


@router.websocket("/ws/attendance/{course_id}")
async def attendance_updates(
    websocket: WebSocket,
    course_id: str,
    token: str = Query(..., description="Bearer token of the lecturer; browsers cannot set headers on WebSockets."),
    service: AttendanceService = Depends(get_attendance_service),
    live_notifier: LiveUpdateNotifier = Depends(get_notifier)
):
    """
    Streams `new_scan` and `scan_count` events for one course to its lecturer.
    Events are best effort; on reconnect the client should re-fetch the attendance list.
    """
    try:
        user = decode_access_token(token)
        if "Lecturer" not in user.role:
            raise InvalidTokenError("Only lecturers can follow live attendance.")
        await service.get_owned_course(course_id, user.user_id)
    except (InvalidTokenError, AuthorizationError, NotFoundError) as e:
        logger.warning(f"Refusing live updates for course '{course_id}': {e}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    except ServiceError as e:
        logger.error(f"Could not verify course '{course_id}' for live updates: {e}")
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    await websocket.accept()
    queue = live_notifier.subscribe(course_id)

    async def forward_events():
        try:
            while True:
                event = await queue.get()
                await websocket.send_json(event)
        except Exception as e:
            logger.info(f"Stopped forwarding live updates for course '{course_id}': {e}")

    forwarder = asyncio.create_task(forward_events())
    try:
        # Incoming messages are ignored; receiving is only how we notice the client leaving.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info(f"Lecturer '{user.user_id}' stopped following course '{course_id}'.")
    finally:
        forwarder.cancel()
        await asyncio.gather(forwarder, return_exceptions=True)
        live_notifier.unsubscribe(course_id, queue)
