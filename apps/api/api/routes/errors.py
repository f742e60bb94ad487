from fastapi import HTTPException

from apps.api.services.errors import (
    AuthorizationError,
    ConflictError,
    HelpdeskError,
    NotFoundError,
    ValidationError,
)

_STATUS_BY_ERROR: tuple[tuple[type[HelpdeskError], int], ...] = (
    (ValidationError, 400),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
)


def http_error(exc: HelpdeskError) -> HTTPException:
    """Translate a service error into the matching HTTP response."""

    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
