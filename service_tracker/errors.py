"""
Domain exceptions raised by the service layer.

The HTTP layer maps these to status codes; the import pipeline catches
them per row and turns them into RowError entries.
"""

from __future__ import annotations


class ServiceTrackerError(Exception):
    """Base class for every error the service layer raises on purpose."""

    reason = "error"

    def __init__(self, message: str, *, reason: str | None = None):
        super().__init__(message)
        self.message = message
        if reason is not None:
            self.reason = reason


class ValidationError(ServiceTrackerError):
    """Bad or missing field, invalid enum value, unparseable or future date."""

    reason = "invalid"


class NotFoundError(ServiceTrackerError):
    reason = "not_found"


class ConflictError(ServiceTrackerError):
    """A uniqueness constraint was hit, e.g. two writers racing on one phone."""

    reason = "conflict"


class ImportStructureError(ServiceTrackerError):
    """The import input as a whole is unusable (empty, unreadable, bad header)."""

    reason = "structure"
