"""
Domain error taxonomy for the report lifecycle core.

Every error carries an HTTP status code so the API layer can map it
without knowing about individual services. Messages are safe to show
to callers verbatim, except for InternalError.
"""

from typing import Optional


class CivicError(Exception):
    """Base class for all domain errors."""

    status_code: int = 400
    error_code: str = "civic_error"

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"detail": self.message, "error": self.error_code}
        if self.details:
            payload["context"] = self.details
        return payload


class ValidationError(CivicError, ValueError):
    """Malformed or missing input, enum violation. Rejected before persistence."""

    status_code = 422
    error_code = "validation_error"


class NotFoundError(CivicError, LookupError):
    """Referenced report, user, vote or department does not exist."""

    status_code = 404
    error_code = "not_found"


class ConflictError(CivicError):
    """Lost a concurrent write race. Caller should re-read and retry."""

    status_code = 409
    error_code = "conflict"


class InvalidTransitionError(CivicError):
    """Status change not permitted from the current state."""

    status_code = 409
    error_code = "invalid_transition"

    def __init__(self, from_status: str, to_status: str, allowed=None):
        allowed = list(allowed or [])
        super().__init__(
            f"Invalid status transition: {from_status} → {to_status}. "
            f"Allowed transitions from {from_status}: {allowed}",
            details={"from": from_status, "to": to_status, "allowed": allowed},
        )
        self.from_status = from_status
        self.to_status = to_status


class CycleError(CivicError):
    """Duplicate link would create a cycle."""

    status_code = 409
    error_code = "duplicate_cycle"


class PermissionDeniedError(CivicError):
    """Trusted identity lacks the role required for the operation."""

    status_code = 403
    error_code = "permission_denied"


class InternalError(CivicError):
    """Storage or infrastructure failure."""

    status_code = 500
    error_code = "internal_error"


class DuplicateKeyError(ConflictError):
    """A uniqueness constraint was violated on insert (store level)."""

    error_code = "duplicate_key"
