"""
Error taxonomy for the proctoring core.

Service code raises these; the API layer maps each kind to one HTTP status
(see ``proctor.main.proctor_error_handler``). Nothing here is retried automatically.
"""
from __future__ import annotations


class ProctorError(Exception):
    """Base class for all proctoring errors surfaced to callers."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(ProctorError):
    """Attempt, assessment, session or violation does not exist."""

    status_code = 404


class ForbiddenError(ProctorError):
    """Caller does not own the resource, or the session is no longer active."""

    status_code = 403


class ConflictError(ForbiddenError):
    """Caller already holds an active proctor session."""

    status_code = 409


class ValidationError(ProctorError):
    """Malformed violation, timing or browser-signal input."""

    status_code = 422
