"""Error taxonomy shared by the scheduling engine and the HTTP layer."""

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    SLOT_UNAVAILABLE = "slot_unavailable"
    INVALID_TRANSITION = "invalid_transition"


class SchedulingError(Exception):
    """Base class for recoverable scheduling failures.

    Booking and slot operations turn them into a result object carrying
    ``kind`` and the message. Availability management raises them to the
    caller.
    """

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class SchedulingValidationError(SchedulingError):
    kind = ErrorKind.VALIDATION


class NotFoundError(SchedulingError):
    kind = ErrorKind.NOT_FOUND


class SlotUnavailableError(SchedulingError):
    kind = ErrorKind.SLOT_UNAVAILABLE


class InvalidTransitionError(SchedulingError):
    kind = ErrorKind.INVALID_TRANSITION


class StorageError(Exception):
    """The database failed underneath an operation.

    Propagated to the caller after the session has been rolled back.
    """
