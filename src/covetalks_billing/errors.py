"""Error taxonomy for billing synchronization."""

import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
    """Kinds of failure a sync can report."""
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    PROVIDER = "provider"
    PERSISTENCE = "persistence"
    DUPLICATE = "duplicate"
    UNEXPECTED = "unexpected"


class BillingSyncError(Exception):
    """Base class for all billing sync errors."""

    kind: ErrorKind = ErrorKind.UNEXPECTED
    status_code: int = 500

    def __init__(self, message: str, *, reference: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reference = reference


class ValidationError(BillingSyncError):
    """Required input is missing or malformed."""
    kind = ErrorKind.VALIDATION
    status_code = 400


class NotFoundError(BillingSyncError):
    """A referenced record does not exist."""
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class ProviderError(BillingSyncError):
    """A call to the billing provider failed."""
    kind = ErrorKind.PROVIDER
    status_code = 502


class PersistenceError(BillingSyncError):
    """Reading or writing a local record failed."""
    kind = ErrorKind.PERSISTENCE


class DuplicateRecordError(PersistenceError):
    """An insert collided with an existing external reference."""
    kind = ErrorKind.DUPLICATE
    status_code = 409
