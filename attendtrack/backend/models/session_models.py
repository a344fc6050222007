from pydantic import BaseModel, ConfigDict, Field, model_validator
from datetime import datetime
from typing import List, Optional
from uuid import UUID

class ScanRecord(BaseModel):
    """A single accepted scan. Owned by its session and never edited once written."""
    model_config = ConfigDict(frozen=True)

    student_id: str = Field(..., description="FK linking to the scanning student")
    scanned_at: datetime = Field(..., description="Instant the scan passed validation, reference timezone.")


class AttendanceSession(BaseModel):
    """
    A time-boxed window during which scans for one course are accepted.

    Course code and name are a snapshot taken at generation time; they are not
    re-synced if the course is renamed later. Apart from appending scans the
    session is never modified, and it is kept (inert) after it expires.
    """
    session_id: UUID = Field(..., description="Unique identifier for the attendance session")
    course_id: str = Field(..., description="FK linking to the course the session belongs to")
    course_code: str
    course_name: str
    lecturer_id: str = Field(..., description="The lecturer who generated the session")
    issued_at: datetime
    expires_at: datetime
    scans: List[ScanRecord] = Field(default_factory=list)

    @model_validator(mode="after")
    def _expiry_after_issue(self):
        if self.expires_at <= self.issued_at:
            raise ValueError("expires_at must be later than issued_at")
        return self

    def is_live(self, now: datetime) -> bool:
        return self.expires_at > now


class QRPayload(BaseModel):
    """The decoded contents of a scanned QR code. Compared by value only."""
    model_config = ConfigDict(frozen=True)

    course_id: str
    course_code: str
    course_name: str
    generated_at: datetime
    expires_at: datetime
    signature: Optional[str] = None
