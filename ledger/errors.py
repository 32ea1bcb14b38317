"""
Error taxonomy for callable operations.

Every failure a caller can observe is a LedgerServiceError carrying a stable
code (the wire value) and the HTTP status the API layer maps it to. Storage
failures never surface directly; the callable layer wraps them in
InternalError after logging.
"""

from typing import Optional


class LedgerServiceError(Exception):
    code = "unknown"
    http_status = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_response(self) -> dict:
        return {"error": {"code": self.code, "message": self.message}}


class UnauthenticatedError(LedgerServiceError):
    code = "unauthenticated"
    http_status = 401


class PermissionDeniedError(LedgerServiceError):
    code = "permission-denied"
    http_status = 403


class InvalidArgumentError(LedgerServiceError):
    code = "invalid-argument"
    http_status = 400


class NotFoundError(LedgerServiceError):
    code = "not-found"
    http_status = 404


class FailedPreconditionError(LedgerServiceError):
    """Insufficient funds, capacity reached, already processed."""
    code = "failed-precondition"
    http_status = 412


class AlreadyExistsError(LedgerServiceError):
    """Duplicate request or occupied slot."""
    code = "already-exists"
    http_status = 409


class InternalError(LedgerServiceError):
    code = "internal"
    http_status = 500

    def __init__(self, message: str = "An unexpected error occurred.", details: Optional[dict] = None):
        super().__init__(message, details)
