"""
Domain exceptions.

Services raise these; the HTTP layer maps them to status codes in main.py.
"""


class ObraError(Exception):
    """Base class for all domain errors."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ObraError):
    status_code = 404


class PermissionDeniedError(ObraError):
    status_code = 403


class UnauthorizedError(ObraError):
    status_code = 401


class ValidationError(ObraError):
    status_code = 422


class ConflictError(ObraError):
    status_code = 409


class QuotaExceededError(ObraError):
    """Upload would exceed a file, project or organization storage limit."""

    status_code = 413
