from pydantic import BaseModel, Field

class ScanRequest(BaseModel):
    """Request model for submitting a scanned QR code."""
    qr_data: str = Field(..., description="The raw text read from the QR code.")
    intended_course_id: str = Field(..., min_length=1, description="The course whose screen the student scanned from.")
