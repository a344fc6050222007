import logging
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from datetime import datetime, timedelta, timezone
import jwt
from pydantic import ValidationError

from .schemas.user import TokenData, CurrentUser
from ..config.config import settings

logger = logging.getLogger(__name__)

# Tokens are issued by the external authentication service; this service only verifies them.
bearer_scheme = HTTPBearer(auto_error=False)


class InvalidTokenError(Exception):
    pass


def create_access_token(data: dict, expires_delta: timedelta) -> str:
    """Signs a token the same way the authentication service does. Used by tools and tests."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> CurrentUser:
    """Verifies a bearer token and returns the caller's id and role."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        token_data = TokenData.model_validate(payload)
    except (jwt.PyJWTError, ValidationError) as e:
        # Covers expired or badly signed tokens and claims of the wrong shape.
        logger.warning(f"Token validation error: {e}")
        raise InvalidTokenError(str(e)) from e

    if not token_data.user_id or not token_data.role:
        logger.warning(f"Token is valid but missing 'user_id' or 'role': {payload}")
        raise InvalidTokenError("Token is missing required claims.")
    return CurrentUser(user_id=token_data.user_id, role=token_data.role)


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> CurrentUser:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception
    try:
        return decode_access_token(credentials.credentials)
    except InvalidTokenError:
        raise credentials_exception
