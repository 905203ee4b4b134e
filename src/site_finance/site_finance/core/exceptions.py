from __future__ import annotations

from typing import Optional


class DomainError(Exception):
    """Base exception for business rule violations."""


class ValidationError(DomainError):
    """Raised when input data is invalid or violates domain rules."""

    def __init__(self, message: str, *, field: Optional[str] = None, record_id: Optional[str] = None):
        super().__init__(message)
        self.field = field
        self.record_id = record_id


class NotFoundError(DomainError):
    """Raised when the target record does not exist in the expected state."""

    def __init__(self, message: str, *, record_id: Optional[str] = None):
        super().__init__(message)
        self.record_id = record_id


class AuthorizationError(DomainError):
    """Raised when a user lacks permission for an action."""


class StoreUnavailableError(DomainError):
    """Raised when the persistence layer cannot be reached.

    The only error class a caller may retry.
    """
