"""Database access for the scheduling engine.

Each store wraps one request-scoped session. Stores only read, add and flush;
committing is left to the caller so that a booking's conflict check and its
write land in the same unit of work.
"""

import logging
from contextlib import contextmanager
from datetime import date, datetime, time
from typing import Iterator, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from therapy_booking.core.errors import SchedulingError, StorageError
from therapy_booking.models.appointment import Appointment
from therapy_booking.models.availability import Availability
from therapy_booking.models.client import Client
from therapy_booking.models.provider import Provider, provider_services
from therapy_booking.models.service import Service
from therapy_booking.scheduling.locks import ProviderLockRegistry
from therapy_booking.scheduling.types import ACTIVE_STATUSES, AppointmentStatus

logger = logging.getLogger(__name__)

_ACTIVE_STATUS_VALUES = [status.value for status in ACTIVE_STATUSES]


@contextmanager
def storage_errors(db: Session) -> Iterator[None]:
    """Roll back and re-raise database failures as StorageError."""
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Database operation failed')
        raise StorageError('The booking store is unavailable.') from exc


def commit(db: Session, on_integrity_error: SchedulingError | None = None) -> None:
    """Commit the session.

    A constraint violation is reported as ``on_integrity_error`` when one is
    given, which lets a store-enforced uniqueness rule surface as a normal
    scheduling outcome instead of a storage failure.
    """
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if on_integrity_error is None:
            raise StorageError('The booking store rejected the write.') from exc
        logger.warning('Commit rejected by a database constraint: %s', exc.orig)
        raise on_integrity_error from exc


@contextmanager
def provider_write(db: Session, locks: ProviderLockRegistry, provider_id: int) -> Iterator[None]:
    """Hold the provider's process lock and its database lock for one write.

    A SchedulingError raised inside rolls the session back, which releases
    the database lock before the process lock.
    """
    with locks.hold(provider_id):
        DirectoryStore(db).lock_provider(provider_id)
        try:
            yield
        except SchedulingError:
            db.rollback()
            raise


class DirectoryStore:
    """Lookups for providers, services and clients."""

    def __init__(self, db: Session):
        self.db = db

    def get_provider(self, provider_id: int) -> Optional[Provider]:
        return self.db.get(Provider, provider_id)

    def get_service(self, service_id: int) -> Optional[Service]:
        return self.db.get(Service, service_id)

    def get_client(self, client_id: int) -> Optional[Client]:
        return self.db.get(Client, client_id)

    def offers_service(self, provider_id: int, service_id: int) -> bool:
        row = self.db.execute(
            select(provider_services.c.provider_id).where(
                provider_services.c.provider_id == provider_id,
                provider_services.c.service_id == service_id,
            )
        ).first()
        return row is not None

    def lock_provider(self, provider_id: int) -> None:
        """Hold a database lock on the provider until the session commits or rolls back.

        Serialises booking writes for one provider across worker processes.
        """
        if self.db.get_bind().dialect.name == 'sqlite':
            # SQLite has no FOR UPDATE; any write takes the database write lock.
            self.db.execute(
                update(Provider)
                .where(Provider.id == provider_id)
                .values(is_active=Provider.is_active)
                .execution_options(synchronize_session=False)
            )
            return
        self.db.query(Provider.id).filter(Provider.id == provider_id).with_for_update().first()

    def providers_offering(self, service_id: int) -> list[Provider]:
        """Active providers offering the service, ordered by name."""
        return (
            self.db.query(Provider)
            .join(provider_services, provider_services.c.provider_id == Provider.id)
            .filter(
                provider_services.c.service_id == service_id,
                Provider.is_active.is_(True),
            )
            .order_by(Provider.last_name.asc(), Provider.first_name.asc(), Provider.id.asc())
            .all()
        )


class AvailabilityStore:
    def __init__(self, db: Session):
        self.db = db

    def get_override_for_date(self, provider_id: int, day: date) -> Optional[Availability]:
        return self.db.query(Availability).filter(
            Availability.provider_id == provider_id,
            Availability.specific_date == day,
        ).first()

    def get_rule_for_weekday(self, provider_id: int, weekday: int) -> Optional[Availability]:
        return self.db.query(Availability).filter(
            Availability.provider_id == provider_id,
            Availability.day_of_week == weekday,
            Availability.specific_date.is_(None),
        ).first()

    def list_for_provider(self, provider_id: int) -> list[Availability]:
        return (
            self.db.query(Availability)
            .filter(Availability.provider_id == provider_id)
            .order_by(Availability.specific_date.asc(), Availability.day_of_week.asc())
            .all()
        )

    def upsert_weekday(
        self,
        provider_id: int,
        weekday: int,
        is_available: bool,
        start_time: time | None,
        end_time: time | None,
        break_start_time: time | None,
        break_end_time: time | None,
        notes: str | None,
    ) -> Availability:
        row = self.get_rule_for_weekday(provider_id, weekday)
        if row is None:
            row = Availability(provider_id=provider_id, day_of_week=weekday, specific_date=None)
            self.db.add(row)
        self._assign(row, is_available, start_time, end_time, break_start_time, break_end_time, notes)
        self.db.flush()
        return row

    def upsert_override(
        self,
        provider_id: int,
        day: date,
        is_available: bool,
        start_time: time | None,
        end_time: time | None,
        break_start_time: time | None,
        break_end_time: time | None,
        notes: str | None,
    ) -> Availability:
        row = self.get_override_for_date(provider_id, day)
        if row is None:
            row = Availability(provider_id=provider_id, day_of_week=None, specific_date=day)
            self.db.add(row)
        self._assign(row, is_available, start_time, end_time, break_start_time, break_end_time, notes)
        self.db.flush()
        return row

    def delete_override(self, provider_id: int, day: date) -> bool:
        row = self.get_override_for_date(provider_id, day)
        if row is None:
            return False
        self.db.delete(row)
        self.db.flush()
        return True

    def delete_weekday_rule(self, provider_id: int, weekday: int) -> bool:
        row = self.get_rule_for_weekday(provider_id, weekday)
        if row is None:
            return False
        self.db.delete(row)
        self.db.flush()
        return True

    def override_dates(self, provider_id: int) -> set[date]:
        rows = self.db.query(Availability.specific_date).filter(
            Availability.provider_id == provider_id,
            Availability.specific_date.is_not(None),
        ).all()
        return {row_date for (row_date,) in rows}

    @staticmethod
    def _assign(row, is_available, start_time, end_time, break_start_time, break_end_time, notes) -> None:
        row.is_available = is_available
        row.start_time = start_time
        row.end_time = end_time
        row.break_start_time = break_start_time
        row.break_end_time = break_end_time
        row.notes = notes
        row.updated_at = datetime.now()


class AppointmentStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, appointment_id: int) -> Optional[Appointment]:
        return self.db.get(Appointment, appointment_id)

    def find_overlapping(
        self,
        provider_id: int,
        start: datetime,
        end: datetime,
        exclude_id: int | None = None,
    ) -> list[Appointment]:
        """Active appointments of the provider intersecting [start, end)."""
        query = self.db.query(Appointment).filter(
            Appointment.provider_id == provider_id,
            Appointment.status.in_(_ACTIVE_STATUS_VALUES),
            Appointment.start_time < end,
            Appointment.end_time > start,
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)
        return query.order_by(Appointment.start_time.asc()).all()

    def busy_intervals(self, provider_id: int, start: datetime, end: datetime) -> list[tuple[datetime, datetime]]:
        rows = self.db.query(Appointment.start_time, Appointment.end_time).filter(
            Appointment.provider_id == provider_id,
            Appointment.status.in_(_ACTIVE_STATUS_VALUES),
            Appointment.start_time < end,
            Appointment.end_time > start,
        ).all()
        return [(row_start, row_end) for row_start, row_end in rows]

    def for_provider(self, provider_id: int, start: datetime, end: datetime) -> list[Appointment]:
        return (
            self.db.query(Appointment)
            .filter(
                Appointment.provider_id == provider_id,
                Appointment.start_time < end,
                Appointment.end_time > start,
            )
            .order_by(Appointment.start_time.asc())
            .all()
        )

    def active_for_provider(self, provider_id: int) -> list[Appointment]:
        return (
            self.db.query(Appointment)
            .filter(
                Appointment.provider_id == provider_id,
                Appointment.status.in_(_ACTIVE_STATUS_VALUES),
            )
            .order_by(Appointment.start_time.asc())
            .all()
        )

    def for_client(self, client_id: int) -> list[Appointment]:
        return (
            self.db.query(Appointment)
            .filter(Appointment.client_id == client_id)
            .order_by(Appointment.start_time.desc())
            .all()
        )

    def insert(self, appointment: Appointment) -> Appointment:
        self.db.add(appointment)
        self.db.flush()
        return appointment

    def update_interval(
        self,
        appointment: Appointment,
        start: datetime,
        end: datetime,
        status: AppointmentStatus,
    ) -> Appointment:
        appointment.start_time = start
        appointment.end_time = end
        appointment.status = status.value
        appointment.updated_at = datetime.now()
        self.db.flush()
        return appointment

    def update_status(
        self,
        appointment: Appointment,
        status: AppointmentStatus,
        notes: str | None = None,
    ) -> Appointment:
        appointment.status = status.value
        if notes is not None:
            appointment.notes = notes
        appointment.updated_at = datetime.now()
        self.db.flush()
        return appointment

    def mark_cancelled(self, appointment: Appointment, reason: str | None, note: str | None = None) -> Appointment:
        appointment.cancelled_at = datetime.now()
        appointment.cancellation_reason = reason
        notes = append_note(appointment.notes, note) if note else None
        return self.update_status(appointment, AppointmentStatus.CANCELLED, notes=notes)


def append_note(existing: str | None, line: str) -> str:
    if not existing:
        return line
    return f'{existing}\n{line}'
