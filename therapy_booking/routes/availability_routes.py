from datetime import date, datetime, time

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from therapy_booking.core.errors import SchedulingError, StorageError
from therapy_booking.database import get_db
from therapy_booking.routes.common import (
    ensure_database_ready,
    from_scheduling_error,
    raise_for_result,
    storage_unavailable,
)
from therapy_booking.scheduling.engine import BookingEngine
from therapy_booking.scheduling.types import (
    AvailabilityRule,
    AvailableSlot,
    BlockedTime,
    DateOverride,
    EffectiveWindow,
    RecurringRule,
)

router = APIRouter(tags=['availability'])

MAX_AVAILABILITY_NOTES_LENGTH = 500


def _normalize_optional_text(value: str | None, max_length: int, label: str) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > max_length:
        raise ValueError(f'{label} must be {max_length} characters or fewer.')

    return normalized


class SetHoursRequest(BaseModel):
    is_available: bool
    start_time: time | None = None
    end_time: time | None = None
    break_start_time: time | None = None
    break_end_time: time | None = None
    notes: str | None = None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value, MAX_AVAILABILITY_NOTES_LENGTH, 'Notes')


class BlockTimeRequest(BaseModel):
    start_time: datetime
    end_time: datetime
    reason: str | None = None
    cancel_existing: bool = False

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value, MAX_AVAILABILITY_NOTES_LENGTH, 'Reason')


class ResolvedAvailabilityResponse(BaseModel):
    provider_id: int
    date: date
    is_available: bool
    window: EffectiveWindow | None = None


class SlotSearchResponse(BaseModel):
    service_id: int
    provider_id: int | None = None
    start: datetime
    end: datetime
    truncated: bool
    slots: list[AvailableSlot]


@router.get('/providers/{provider_id}', response_model=ResolvedAvailabilityResponse)
def resolve_provider_availability(
    provider_id: int,
    day: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        window = BookingEngine(db).resolve_availability(provider_id, day)
    except SchedulingError as exc:
        raise from_scheduling_error(exc) from exc
    except StorageError as exc:
        raise storage_unavailable() from exc

    return ResolvedAvailabilityResponse(
        provider_id=provider_id,
        date=day,
        is_available=window is not None,
        window=window,
    )


@router.get('/providers/{provider_id}/rules', response_model=list[AvailabilityRule])
def list_provider_rules(provider_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return BookingEngine(db).availability.list_rules(provider_id)
    except SchedulingError as exc:
        raise from_scheduling_error(exc) from exc
    except StorageError as exc:
        raise storage_unavailable() from exc


@router.put('/providers/{provider_id}/weekdays/{weekday}', response_model=RecurringRule)
def set_weekday_hours(
    provider_id: int,
    weekday: int,
    data: SetHoursRequest,
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return BookingEngine(db).availability.set_weekday_rule(
            provider_id,
            weekday,
            data.is_available,
            data.start_time,
            data.end_time,
            data.break_start_time,
            data.break_end_time,
            data.notes,
        )
    except SchedulingError as exc:
        raise from_scheduling_error(exc) from exc
    except StorageError as exc:
        raise storage_unavailable() from exc


@router.put('/providers/{provider_id}/dates/{day}', response_model=DateOverride)
def set_date_hours(
    provider_id: int,
    day: date,
    data: SetHoursRequest,
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return BookingEngine(db).availability.set_date_override(
            provider_id,
            day,
            data.is_available,
            data.start_time,
            data.end_time,
            data.break_start_time,
            data.break_end_time,
            data.notes,
        )
    except SchedulingError as exc:
        raise from_scheduling_error(exc) from exc
    except StorageError as exc:
        raise storage_unavailable() from exc


@router.delete('/providers/{provider_id}/weekdays/{weekday}', status_code=status.HTTP_204_NO_CONTENT)
def clear_weekday_hours(provider_id: int, weekday: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        BookingEngine(db).availability.clear_weekday_rule(provider_id, weekday)
    except SchedulingError as exc:
        raise from_scheduling_error(exc) from exc
    except StorageError as exc:
        raise storage_unavailable() from exc

    return None


@router.delete('/providers/{provider_id}/dates/{day}', status_code=status.HTTP_204_NO_CONTENT)
def clear_date_hours(provider_id: int, day: date, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        BookingEngine(db).availability.clear_date_override(provider_id, day)
    except SchedulingError as exc:
        raise from_scheduling_error(exc) from exc
    except StorageError as exc:
        raise storage_unavailable() from exc

    return None


@router.post('/providers/{provider_id}/block-time', response_model=BlockedTime)
def block_provider_time(
    provider_id: int,
    data: BlockTimeRequest,
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return BookingEngine(db).availability.block_time(
            provider_id,
            data.start_time,
            data.end_time,
            reason=data.reason,
            cancel_existing=data.cancel_existing,
        )
    except SchedulingError as exc:
        raise from_scheduling_error(exc) from exc
    except StorageError as exc:
        raise storage_unavailable() from exc


@router.post(
    '/providers/{provider_id}/default-week',
    response_model=list[RecurringRule],
    status_code=status.HTTP_201_CREATED,
)
def apply_default_week(provider_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return BookingEngine(db).availability.apply_default_week(provider_id)
    except SchedulingError as exc:
        raise from_scheduling_error(exc) from exc
    except StorageError as exc:
        raise storage_unavailable() from exc


@router.get('/slots', response_model=SlotSearchResponse)
def list_available_slots(
    service_id: int = Query(...),
    start: datetime = Query(...),
    end: datetime = Query(...),
    provider_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        search = BookingEngine(db).generate_slots(service_id, provider_id, start, end)
    except StorageError as exc:
        raise storage_unavailable() from exc

    raise_for_result(search)

    return SlotSearchResponse(
        service_id=service_id,
        provider_id=provider_id,
        start=start,
        end=end,
        truncated=search.truncated,
        slots=search.slots,
    )
