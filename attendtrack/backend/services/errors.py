# --- Service Layer Exception Classes ---

class ServiceError(Exception):
    """Infrastructure failure (store or lookup unreachable). Callers may retry with backoff."""
    pass

class InvalidArgumentError(ServiceError):
    """A request argument is outside its allowed range."""
    pass

class AuthorizationError(ServiceError):
    """The caller is not allowed to act on this course."""
    pass

class NotFoundError(ServiceError):
    """A referenced course or session does not exist."""
    pass
