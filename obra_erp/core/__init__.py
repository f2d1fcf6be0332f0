"""Core modules: configuration-independent domain logic and persistence."""

from .logging import configure_logging, get_logger
from .errors import (
    ObraError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    ConflictError,
    QuotaExceededError,
    UnauthorizedError,
)
from .database import Database

__all__ = [
    "configure_logging",
    "get_logger",
    "ObraError",
    "NotFoundError",
    "PermissionDeniedError",
    "ValidationError",
    "ConflictError",
    "QuotaExceededError",
    "UnauthorizedError",
    "Database",
]
