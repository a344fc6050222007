# attendtrack/backend/api/utilities/limiter.py

from fastapi import Request
import jwt

from slowapi import Limiter
from slowapi.util import get_remote_address

from ...config.config import settings

def get_limiter_key(request: Request) -> str:
    """
    Rate-limit key for a request.

    Authenticated requests are limited per user id taken from the bearer token,
    everything else per client IP.
    """
    auth_header = request.headers.get("authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        token = auth_header.split(" ")[1]
        try:
            # Only the identity matters here, so expiry is not checked.
            payload = jwt.decode(
                token,
                settings.SECRET_KEY,
                algorithms=[settings.ALGORITHM],
                options={"verify_exp": False}
            )
            user_id = payload.get("user_id")
            if user_id:
                return user_id
        except jwt.PyJWTError:
            pass

    return get_remote_address(request)

# Falls back to in-memory storage when RATE_LIMITER_REDIS_URL is unset.
limiter = Limiter(key_func=get_limiter_key, storage_uri=settings.RATE_LIMITER_REDIS_URL)
