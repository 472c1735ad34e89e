"""Domain exceptions.

Every exception carries the HTTP status the API answers with; the handlers
in ``drugwatch.main`` turn them into ``{"ok": false, "error": ...}`` bodies.
"""

from typing import Optional


class DrugWatchError(Exception):
    """Base class for all application errors."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class RecordNotFound(DrugWatchError):
    status_code = 404


class ReleaseValidationError(DrugWatchError):
    """One or more release form fields are missing or malformed."""

    status_code = 422

    def __init__(self, errors: dict[str, str]):
        self.errors = errors
        super().__init__(next(iter(errors.values())) if errors else "Invalid release form.")


class InspectionValidationError(ReleaseValidationError):
    """Inspection submission failed field validation."""


class TransitionRejected(DrugWatchError):
    """Illegal impoundment lifecycle transition."""

    status_code = 409


class StaleRecordError(DrugWatchError):
    """The record changed since the caller last read it."""

    status_code = 409

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Record was modified by someone else (revision {actual}, expected {expected}). "
            "Reload and try again."
        )


class StoreWriteError(DrugWatchError):
    """The record store rejected or failed a write."""

    status_code = 502


class NotificationError(DrugWatchError):
    """SMS delivery failed. Never aborts the transition that triggered it."""

    status_code = 502


class GatewayMisconfigured(DrugWatchError):
    status_code = 500
