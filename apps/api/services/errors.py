"""Error taxonomy shared by the ticket lifecycle services."""

from __future__ import annotations


class HelpdeskError(RuntimeError):
    """Base error for helpdesk service issues."""


class ValidationError(HelpdeskError):
    """Raised for malformed or semantically invalid input."""


class NotFoundError(HelpdeskError):
    """Raised when a referenced entity does not exist."""


class ConflictError(HelpdeskError):
    """Raised when a write would violate a uniqueness constraint."""


class AuthorizationError(HelpdeskError):
    """Raised when the acting user may not perform the requested change."""


class PersistenceError(HelpdeskError):
    """Raised when the storage layer fails; callers may retry."""

    def __init__(self, message: str = "The request could not be completed, please try again") -> None:
        super().__init__(message)
