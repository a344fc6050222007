from fastapi import HTTPException, status

from ...services.errors import ServiceError, InvalidArgumentError, AuthorizationError, NotFoundError


def to_http_exception(error: ServiceError) -> HTTPException:
    """Maps a service-layer error to the HTTP response the client should see."""
    if isinstance(error, InvalidArgumentError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(error))
    if isinstance(error, AuthorizationError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(error))
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    # Infrastructure trouble; clients retry these with backoff.
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=str(error),
        headers={"Retry-After": "5"},
    )
