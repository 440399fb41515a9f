"""
Custom Exceptions

Centralized exception definitions. FastAPI converts these to HTTP
responses; main.py adds a "type" field to the body.
"""
from datetime import datetime
from typing import Optional
from fastapi import HTTPException, status


class UserNotFoundError(HTTPException):
    """Raised when user cannot be found."""

    def __init__(self, user_id: str = ""):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User not found: {user_id}" if user_id else "User not found"
        )


class NoteNotFoundError(HTTPException):
    """Raised when note cannot be found."""

    def __init__(self, note_id: str = ""):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Note not found: {note_id}" if note_id else "Note not found"
        )


class AuthenticationError(HTTPException):
    """Raised when authentication fails."""

    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AccountLockedError(HTTPException):
    """
    Raised when a login or MFA check hits an active lockout.

    Retry-After carries the seconds left on the lock.
    """

    def __init__(self, locked_until: datetime, detail: str = "Account temporarily locked due to failed attempts"):
        retry_after = max(1, int((locked_until - datetime.utcnow()).total_seconds()))
        self.locked_until = locked_until
        super().__init__(
            status_code=status.HTTP_423_LOCKED,
            detail=detail,
            headers={"Retry-After": str(retry_after)}
        )


class MfaRequiredError(HTTPException):
    """Raised when an endpoint needs a completed MFA login or enrollment."""

    def __init__(self, detail: str = "Multi-factor authentication required"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail
        )


class InvalidMfaTransition(HTTPException):
    """Raised when an MFA operation is not allowed from the current state."""

    def __init__(self, current_state: str, event: str):
        self.current_state = current_state
        self.event = event
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot {event.replace('_', ' ')} while MFA is {current_state}"
        )


class InvalidMfaCode(HTTPException):
    """Raised when a TOTP or backup code is rejected."""

    def __init__(self, remaining_attempts: Optional[int] = None):
        self.remaining_attempts = remaining_attempts
        detail = "Invalid MFA code"
        if remaining_attempts is not None:
            detail = f"Invalid MFA code. {remaining_attempts} attempt(s) remaining"
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail
        )


class TenantIsolationError(HTTPException):
    """
    Raised when a tenant isolation violation is detected.

    This is a CRITICAL security error and is logged as a security event.
    """

    def __init__(self, detail: str = "Tenant isolation violation"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail
        )


class PermissionDenied(HTTPException):
    """Raised when the caller's role is insufficient."""

    def __init__(self, detail: str = "Permission denied"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail
        )


class InvalidInputError(HTTPException):
    """Raised when input validation fails."""

    def __init__(self, detail: str = "Invalid input"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail
        )
