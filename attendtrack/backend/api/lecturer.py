from fastapi import APIRouter, Depends, HTTPException, status, Request, Response, Query
from typing import List, Optional

from ..config.config import settings
from ..services.errors import ServiceError
from ..services.session_generator import SessionGenerator
from ..services.attendance_service import AttendanceService, SessionAttendance
from .schemas.session import (
    GenerateSessionRequest, GeneratedSessionResponse, LiveSessionResponse,
    RecentScansResponse, SessionResponse
)
from .schemas.user import CurrentUser
from .auth import get_current_user
from .dependencies import get_session_generator, get_attendance_service
from .utilities.errors import to_http_exception
from .utilities.limiter import limiter

router = APIRouter(prefix="/lecturer", tags=["Lecturer Endpoints"])

def _verify_lecturer_role(user: CurrentUser):
    """Helper function to verify the current user is a lecturer."""
    if "Lecturer" not in user.role:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This operation is only valid for lecturers."
        )


@router.post(
    "/courses/{course_id}/sessions",
    response_model=GeneratedSessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Generate the attendance QR code for a course"
)
@limiter.limit("30/minute")
async def generate_session(
    request: Request,
    response: Response,
    course_id: str,
    body: Optional[GenerateSessionRequest] = None,
    user: CurrentUser = Depends(get_current_user),
    generator: SessionGenerator = Depends(get_session_generator)
):
    """
    Creates a new attendance session valid for `duration_minutes` (default 60).
    If the course already has a live session, its QR payload is returned
    unchanged with status 200 instead.
    """
    _verify_lecturer_role(user)
    duration_minutes = body.duration_minutes if body else None
    try:
        generated = await generator.generate(course_id, user.user_id, duration_minutes)
    except ServiceError as e:
        raise to_http_exception(e)

    if generated.reused:
        response.status_code = status.HTTP_200_OK
    return GeneratedSessionResponse(
        payload=generated.payload,
        session=SessionResponse.model_validate(generated.session.model_dump()),
        reused=generated.reused
    )


@router.get(
    "/courses/{course_id}/sessions/live",
    response_model=Optional[LiveSessionResponse],
    summary="Get the course's live attendance session, if any"
)
@limiter.limit("60/minute")
async def get_live_session(
    request: Request,
    course_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: AttendanceService = Depends(get_attendance_service)
):
    _verify_lecturer_role(user)
    try:
        live = await service.get_live_session(course_id, user.user_id)
    except ServiceError as e:
        raise to_http_exception(e)
    if live is None:
        return None
    return LiveSessionResponse(
        payload=live.payload,
        session=SessionResponse.model_validate(live.session.model_dump()),
        remaining_time=live.remaining_time
    )


@router.get(
    "/courses/{course_id}/attendance",
    response_model=List[SessionAttendance],
    summary="List every attendance session of a course with its scans"
)
@limiter.limit("60/minute")
async def get_course_attendance(
    request: Request,
    course_id: str,
    search: Optional[str] = Query(None, description="Filter scans by student name or ID number."),
    user: CurrentUser = Depends(get_current_user),
    service: AttendanceService = Depends(get_attendance_service)
):
    """Sessions are ordered newest first. This is also the full re-fetch used to reconcile live views."""
    _verify_lecturer_role(user)
    try:
        return await service.get_course_attendance(course_id, user.user_id, search=search)
    except ServiceError as e:
        raise to_http_exception(e)


@router.get(
    "/courses/{course_id}/scans/recent",
    response_model=RecentScansResponse,
    summary="Count scans recorded in the last few minutes"
)
@limiter.limit("60/minute")
async def count_recent_scans(
    request: Request,
    course_id: str,
    window_minutes: Optional[int] = Query(None, description="Defaults to 5 minutes."),
    user: CurrentUser = Depends(get_current_user),
    service: AttendanceService = Depends(get_attendance_service)
):
    _verify_lecturer_role(user)
    try:
        count = await service.count_recent_scans(course_id, user.user_id, window_minutes)
    except ServiceError as e:
        raise to_http_exception(e)
    return RecentScansResponse(
        course_id=course_id,
        window_minutes=window_minutes or settings.RECENT_SCAN_WINDOW_MINUTES,
        count=count
    )
