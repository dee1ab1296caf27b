from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from therapy_booking.core.errors import ErrorKind, SchedulingError
from therapy_booking.database import ensure_appointment_schema
from therapy_booking.scheduling.types import BookingResult, SlotSearch

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'

ERROR_STATUS_CODES = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.SLOT_UNAVAILABLE: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
}


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def storage_unavailable() -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=DATABASE_UNAVAILABLE_DETAIL)


def http_error(kind: ErrorKind, message: str | None) -> HTTPException:
    return HTTPException(status_code=ERROR_STATUS_CODES[kind], detail=message or kind.value)


def from_scheduling_error(exc: SchedulingError) -> HTTPException:
    return http_error(exc.kind, exc.message)


def raise_for_result(result: BookingResult | SlotSearch) -> None:
    if result.error_kind is not None:
        raise http_error(result.error_kind, result.error_message)
