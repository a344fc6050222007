from pydantic import BaseModel, Field, ConfigDict
from uuid import UUID
from datetime import datetime
from typing import List, Optional

from ...models.session_models import ScanRecord

class GenerateSessionRequest(BaseModel):
    """Request model for generating (or re-displaying) a course's attendance QR code."""
    duration_minutes: Optional[int] = Field(
        None, description="How long the QR code stays valid. Defaults to 60 minutes; at most 480."
    )

class SessionResponse(BaseModel):
    """Response model for an attendance session."""
    session_id: UUID
    course_id: str
    course_code: str = Field(description="Course code as it was when the QR code was generated.")
    course_name: str
    issued_at: datetime
    expires_at: datetime
    scans: List[ScanRecord] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

class GeneratedSessionResponse(BaseModel):
    """The QR payload to render, plus the session it belongs to."""
    payload: str = Field(description="The exact text to embed in the QR code.")
    session: SessionResponse
    reused: bool = Field(description="True when an existing live session was returned instead of a new one.")

class LiveSessionResponse(BaseModel):
    payload: str
    session: SessionResponse
    remaining_time: str = Field(description="'1h 5m', '42 minutes' or 'expired'.")

class RecentScansResponse(BaseModel):
    course_id: str
    window_minutes: int
    count: int
