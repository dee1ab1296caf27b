"""Appointment lifecycle.

    scheduled ──reschedule──> rescheduled ──reschedule──> rescheduled
        │                          │
        └──cancel / complete / no-show──> cancelled | completed | no_show (terminal)

Every operation returns a BookingResult. Operations that write an interval
run their conflict check, write and commit while holding the provider's lock
and a database lock on the provider row, so two requests for the same provider
cannot both pass the check, even from different worker processes. A commit
rejected by a database constraint is reported as slot_unavailable.

Rescheduling moves the appointment in place: the id stays the same and the
previous interval is not kept.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from therapy_booking.core import config
from therapy_booking.core.errors import (
    InvalidTransitionError,
    NotFoundError,
    SchedulingError,
    SchedulingValidationError,
    SlotUnavailableError,
)
from therapy_booking.models.appointment import Appointment
from therapy_booking.scheduling.conflicts import ConflictChecker
from therapy_booking.scheduling.locks import ProviderLockRegistry, provider_locks
from therapy_booking.scheduling.stores import (
    AppointmentStore,
    DirectoryStore,
    commit,
    provider_write,
    storage_errors,
)
from therapy_booking.scheduling.types import (
    TERMINAL_STATUSES,
    AppointmentStatus,
    BookingResult,
)

logger = logging.getLogger(__name__)

SLOT_TAKEN_MESSAGE = 'The selected time slot is no longer available.'


def _normalize_notes(notes: str | None) -> str | None:
    if notes is None:
        return None
    normalized = notes.strip()
    if not normalized:
        return None
    if len(normalized) > config.MAX_APPOINTMENT_NOTES_LENGTH:
        raise SchedulingValidationError(f'Notes must be {config.MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')
    return normalized


def _require_local(value: datetime) -> datetime:
    if value.tzinfo is not None:
        raise SchedulingValidationError('Appointment times must be local times without a timezone offset.')
    return value


class BookingStateMachine:
    def __init__(self, db: Session, locks: ProviderLockRegistry | None = None):
        self.db = db
        self.locks = locks or provider_locks
        self.directory = DirectoryStore(db)
        self.appointments = AppointmentStore(db)
        self.conflicts = ConflictChecker(db)

    def create(
        self,
        client_id: int,
        provider_id: int,
        service_id: int,
        start_time: datetime,
        notes: str | None = None,
    ) -> BookingResult:
        try:
            with storage_errors(self.db):
                service = self._require_bookable(client_id, provider_id, service_id)
                appointment = self._book(
                    client_id,
                    provider_id,
                    service_id,
                    _require_local(start_time),
                    timedelta(minutes=service.duration_minutes),
                    _normalize_notes(notes),
                )
        except SchedulingError as exc:
            self._log_rejection('create', None, exc)
            return BookingResult.failed(exc)

        logger.info(
            'Appointment booked. appointment_id=%s client_id=%s provider_id=%s start=%s',
            appointment.id,
            client_id,
            provider_id,
            appointment.start_time,
        )
        return BookingResult.succeeded(appointment.id, AppointmentStatus.SCHEDULED)

    def rebook(
        self,
        previous_appointment_id: int,
        start_time: datetime,
        notes: str | None = None,
    ) -> BookingResult:
        """Book the same client, provider and service again at a new time.

        The new appointment keeps the previous one's duration and, unless new
        notes are given, its notes.
        """
        try:
            with storage_errors(self.db):
                previous = self._require_appointment(previous_appointment_id, 'Previous appointment')
                self._require_bookable(previous.client_id, previous.provider_id, previous.service_id)
                new_notes = _normalize_notes(notes)
                appointment = self._book(
                    previous.client_id,
                    previous.provider_id,
                    previous.service_id,
                    _require_local(start_time),
                    previous.end_time - previous.start_time,
                    new_notes if new_notes is not None else previous.notes,
                    rebooked_from_id=previous.id,
                )
        except SchedulingError as exc:
            self._log_rejection('rebook', previous_appointment_id, exc)
            return BookingResult.failed(exc)

        logger.info(
            'Appointment rebooked. appointment_id=%s previous_appointment_id=%s',
            appointment.id,
            previous_appointment_id,
        )
        return BookingResult.succeeded(appointment.id, AppointmentStatus.SCHEDULED)

    def reschedule(self, appointment_id: int, new_start_time: datetime) -> BookingResult:
        """Move an open appointment to a new start, keeping its id and duration.

        Fails with not_found for an unknown id, invalid_transition when the
        appointment is already in a terminal status, and slot_unavailable
        when the new interval overlaps another active appointment.
        """
        try:
            with storage_errors(self.db):
                new_start = _require_local(new_start_time)
                appointment = self._require_appointment(appointment_id)

                with provider_write(self.db, self.locks, appointment.provider_id):
                    # Re-read under the lock; another request may have moved or closed it.
                    self.db.refresh(appointment)
                    self._require_open(appointment, 'rescheduled')

                    new_end = new_start + (appointment.end_time - appointment.start_time)
                    if self.conflicts.has_conflict(
                        appointment.provider_id,
                        new_start,
                        new_end,
                        exclude_appointment_id=appointment.id,
                    ):
                        raise SlotUnavailableError('The selected time slot is not available.')

                    self.appointments.update_interval(appointment, new_start, new_end, AppointmentStatus.RESCHEDULED)
                    commit(self.db, on_integrity_error=SlotUnavailableError('The selected time slot is not available.'))
        except SchedulingError as exc:
            self._log_rejection('reschedule', appointment_id, exc)
            return BookingResult.failed(exc, appointment_id=appointment_id)

        logger.info('Appointment rescheduled. appointment_id=%s new_start=%s', appointment_id, new_start)
        return BookingResult.succeeded(appointment_id, AppointmentStatus.RESCHEDULED)

    def cancel(self, appointment_id: int, reason: str | None = None) -> BookingResult:
        reason = reason.strip() if reason else None

        def apply(appointment: Appointment) -> None:
            if appointment.status == AppointmentStatus.COMPLETED.value:
                raise InvalidTransitionError('Completed appointments cannot be cancelled.')
            self._require_open(appointment, 'cancelled')
            note = f'Cancellation reason: {reason}' if reason else None
            self.appointments.mark_cancelled(appointment, reason, note)

        return self._transition('cancel', appointment_id, AppointmentStatus.CANCELLED, apply)

    def complete(self, appointment_id: int) -> BookingResult:
        def apply(appointment: Appointment) -> None:
            self._require_open(appointment, 'completed')
            self.appointments.update_status(appointment, AppointmentStatus.COMPLETED)

        return self._transition('complete', appointment_id, AppointmentStatus.COMPLETED, apply)

    def mark_no_show(self, appointment_id: int) -> BookingResult:
        def apply(appointment: Appointment) -> None:
            self._require_open(appointment, 'marked as a no-show')
            self.appointments.update_status(appointment, AppointmentStatus.NO_SHOW)

        return self._transition('no_show', appointment_id, AppointmentStatus.NO_SHOW, apply)

    def _transition(self, action, appointment_id, target, apply) -> BookingResult:
        try:
            with storage_errors(self.db):
                appointment = self._require_appointment(appointment_id)
                with provider_write(self.db, self.locks, appointment.provider_id):
                    self.db.refresh(appointment)
                    apply(appointment)
                    commit(self.db)
        except SchedulingError as exc:
            self._log_rejection(action, appointment_id, exc)
            return BookingResult.failed(exc, appointment_id=appointment_id)

        logger.info('Appointment %s -> %s', appointment_id, target.value)
        return BookingResult.succeeded(appointment_id, target)

    def _book(
        self,
        client_id: int,
        provider_id: int,
        service_id: int,
        start_time: datetime,
        duration: timedelta,
        notes: str | None,
        rebooked_from_id: int | None = None,
    ) -> Appointment:
        end_time = start_time + duration

        with provider_write(self.db, self.locks, provider_id):
            if self.conflicts.has_conflict(provider_id, start_time, end_time):
                raise SlotUnavailableError(SLOT_TAKEN_MESSAGE)

            now = datetime.now()
            appointment = Appointment(
                client_id=client_id,
                provider_id=provider_id,
                service_id=service_id,
                start_time=start_time,
                end_time=end_time,
                status=AppointmentStatus.SCHEDULED.value,
                notes=notes,
                created_at=now,
                updated_at=now,
                rebooked_from_id=rebooked_from_id,
            )
            self.appointments.insert(appointment)
            commit(self.db, on_integrity_error=SlotUnavailableError(SLOT_TAKEN_MESSAGE))

        return appointment

    def _require_bookable(self, client_id: int, provider_id: int, service_id: int):
        service = self.directory.get_service(service_id)
        if service is None:
            raise NotFoundError('The selected service does not exist.')
        if not service.is_active:
            raise SchedulingValidationError('The selected service is not currently offered.')

        provider = self.directory.get_provider(provider_id)
        if provider is None:
            raise NotFoundError('The selected provider does not exist.')
        if not provider.is_active:
            raise SchedulingValidationError('The selected provider is not currently taking appointments.')
        if not self.directory.offers_service(provider_id, service_id):
            raise SchedulingValidationError('The selected provider does not offer this service.')

        if self.directory.get_client(client_id) is None:
            raise NotFoundError('The client does not exist.')

        return service

    def _require_appointment(self, appointment_id: int, label: str = 'Appointment') -> Appointment:
        appointment = self.appointments.get(appointment_id)
        if appointment is None:
            raise NotFoundError(f'{label} not found.')
        return appointment

    @staticmethod
    def _require_open(appointment: Appointment, verb: str) -> None:
        status = AppointmentStatus(appointment.status)
        if status in TERMINAL_STATUSES:
            raise InvalidTransitionError(f'A {status.value} appointment cannot be {verb}.')

    @staticmethod
    def _log_rejection(action: str, appointment_id: int | None, exc: SchedulingError) -> None:
        logger.warning('Booking %s rejected (%s) for appointment %s: %s', action, exc.kind.value, appointment_id, exc.message)
