from fastapi import APIRouter, Depends, HTTPException, status, Request

from ..services.errors import ServiceError
from ..services.scan_validator import ScanValidator, ScanOutcome
from .schemas.scan import ScanRequest
from .schemas.user import CurrentUser
from .auth import get_current_user
from .dependencies import get_scan_validator
from .utilities.errors import to_http_exception
from .utilities.limiter import limiter

router = APIRouter(prefix="/student", tags=["Student Endpoints"])

def _verify_student_role(user: CurrentUser):
    """Helper function to verify the current user is a student."""
    if "Student" not in user.role:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This operation is only valid for students."
        )


@router.post(
    "/scan",
    response_model=ScanOutcome,
    summary="Submit a scanned attendance QR code"
)
@limiter.limit("10/minute")
async def scan_attendance_code(
    request: Request,
    scan_request: ScanRequest,
    user: CurrentUser = Depends(get_current_user),
    validator: ScanValidator = Depends(get_scan_validator)
):
    """
    Validates a scanned QR code for the course the student opened before scanning.

    Accepted and rejected scans both return 200; a rejection carries a specific
    `reason` the app turns into an actionable message. Re-submitting a scan
    after a timeout is safe: the second attempt reports `already_recorded`.
    """
    _verify_student_role(user)
    try:
        return await validator.validate_scan(
            raw_payload=scan_request.qr_data,
            student_id=user.user_id,
            intended_course_id=scan_request.intended_course_id
        )
    except ServiceError as e:
        raise to_http_exception(e)
