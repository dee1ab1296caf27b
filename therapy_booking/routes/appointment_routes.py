from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy.orm import Session

from therapy_booking.core import config
from therapy_booking.core.errors import StorageError
from therapy_booking.database import get_db
from therapy_booking.routes.common import ensure_database_ready, raise_for_result, storage_unavailable
from therapy_booking.scheduling.engine import BookingEngine
from therapy_booking.scheduling.types import BookingResult

router = APIRouter(tags=['appointments'])

MAX_CANCELLATION_REASON_LENGTH = 500


def _normalize_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > config.MAX_APPOINTMENT_NOTES_LENGTH:
        raise ValueError(f'Notes must be {config.MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

    return normalized


class CreateAppointmentRequest(BaseModel):
    client_id: int
    provider_id: int
    service_id: int
    start_time: datetime
    notes: str | None = None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


class RescheduleAppointmentRequest(BaseModel):
    new_start_time: datetime


class CancelAppointmentRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if len(normalized) > MAX_CANCELLATION_REASON_LENGTH:
            raise ValueError(f'Reason must be {MAX_CANCELLATION_REASON_LENGTH} characters or fewer.')
        return normalized or None


class RebookAppointmentRequest(BaseModel):
    start_time: datetime
    notes: str | None = None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


class AppointmentResponse(BaseModel):
    id: int
    client_id: int
    provider_id: int
    service_id: int
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    status: str
    notes: str | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    rebooked_from_id: int | None = None

    model_config = ConfigDict(from_attributes=True)


def to_response(appointment) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        client_id=appointment.client_id,
        provider_id=appointment.provider_id,
        service_id=appointment.service_id,
        start_time=appointment.start_time,
        end_time=appointment.end_time,
        duration_minutes=int((appointment.end_time - appointment.start_time).total_seconds() // 60),
        status=appointment.status,
        notes=appointment.notes,
        cancelled_at=appointment.cancelled_at,
        cancellation_reason=appointment.cancellation_reason,
        rebooked_from_id=appointment.rebooked_from_id,
    )


def _run(operation) -> BookingResult:
    ensure_database_ready()

    try:
        result = operation()
    except StorageError as exc:
        raise storage_unavailable() from exc

    raise_for_result(result)
    return result


@router.post('', response_model=BookingResult, status_code=status.HTTP_201_CREATED)
def create_appointment(data: CreateAppointmentRequest, db: Session = Depends(get_db)):
    engine = BookingEngine(db)
    return _run(
        lambda: engine.create_booking(
            data.client_id,
            data.provider_id,
            data.service_id,
            data.start_time,
            data.notes,
        )
    )


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(appointment_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        appointment = BookingEngine(db).get_appointment(appointment_id)
    except StorageError as exc:
        raise storage_unavailable() from exc

    if appointment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Appointment not found.',
        )

    return to_response(appointment)


@router.put('/{appointment_id}/reschedule', response_model=BookingResult)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleAppointmentRequest,
    db: Session = Depends(get_db),
):
    engine = BookingEngine(db)
    return _run(lambda: engine.reschedule_booking(appointment_id, data.new_start_time))


@router.put('/{appointment_id}/cancel', response_model=BookingResult)
def cancel_appointment(
    appointment_id: int,
    data: CancelAppointmentRequest | None = None,
    db: Session = Depends(get_db),
):
    engine = BookingEngine(db)
    reason = data.reason if data else None
    return _run(lambda: engine.cancel_booking(appointment_id, reason))


@router.put('/{appointment_id}/complete', response_model=BookingResult)
def complete_appointment(appointment_id: int, db: Session = Depends(get_db)):
    engine = BookingEngine(db)
    return _run(lambda: engine.complete_booking(appointment_id))


@router.put('/{appointment_id}/no-show', response_model=BookingResult)
def mark_appointment_no_show(appointment_id: int, db: Session = Depends(get_db)):
    engine = BookingEngine(db)
    return _run(lambda: engine.mark_no_show(appointment_id))


@router.post('/{appointment_id}/rebook', response_model=BookingResult, status_code=status.HTTP_201_CREATED)
def rebook_appointment(
    appointment_id: int,
    data: RebookAppointmentRequest,
    db: Session = Depends(get_db),
):
    engine = BookingEngine(db)
    return _run(lambda: engine.rebook(appointment_id, data.start_time, data.notes))


@router.get('/providers/{provider_id}', response_model=list[AppointmentResponse])
def list_provider_schedule(
    provider_id: int,
    start: datetime = Query(...),
    end: datetime = Query(...),
    db: Session = Depends(get_db),
):
    if start >= end:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='The start of the range must be before its end.',
        )

    ensure_database_ready()

    try:
        appointments = BookingEngine(db).provider_schedule(provider_id, start, end)
    except StorageError as exc:
        raise storage_unavailable() from exc

    return [to_response(appointment) for appointment in appointments]


@router.get('/clients/{client_id}', response_model=list[AppointmentResponse])
def list_client_appointments(client_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        appointments = BookingEngine(db).client_appointments(client_id)
    except StorageError as exc:
        raise storage_unavailable() from exc

    return [to_response(appointment) for appointment in appointments]
