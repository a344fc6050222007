# attendtrack/backend/api/schemas/user.py
from pydantic import BaseModel
from typing import Optional

# Internal representation of JWT data
class TokenData(BaseModel):
    user_id: Optional[str] = None
    role: Optional[str] = None

class CurrentUser(BaseModel):
    """The authenticated caller, as vouched for by the bearer token."""
    user_id: str
    role: str
