"""Entry point used by request handlers.

One BookingEngine is built per request around that request's session.
"""

from datetime import date, datetime

from sqlalchemy.orm import Session

from therapy_booking.models.appointment import Appointment
from therapy_booking.scheduling.availability import AvailabilityResolver
from therapy_booking.scheduling.booking import BookingStateMachine
from therapy_booking.scheduling.locks import ProviderLockRegistry, provider_locks
from therapy_booking.scheduling.slots import SlotGenerator
from therapy_booking.scheduling.stores import AppointmentStore, storage_errors
from therapy_booking.scheduling.types import BookingResult, EffectiveWindow, SlotSearch


class BookingEngine:
    def __init__(
        self,
        db: Session,
        locks: ProviderLockRegistry | None = None,
        increment_minutes: int | None = None,
    ):
        self.db = db
        self.locks = locks or provider_locks
        self.availability = AvailabilityResolver(db, locks=self.locks)
        self.slots = SlotGenerator(db, increment_minutes=increment_minutes)
        self.bookings = BookingStateMachine(db, locks=self.locks)
        self.appointments = AppointmentStore(db)

    def resolve_availability(self, provider_id: int, day: date) -> EffectiveWindow | None:
        return self.availability.resolve(provider_id, day)

    def generate_slots(
        self,
        service_id: int,
        provider_id: int | None,
        start: datetime,
        end: datetime,
        deadline: float | None = None,
    ) -> SlotSearch:
        return self.slots.generate(service_id, provider_id, start, end, deadline=deadline)

    def create_booking(
        self,
        client_id: int,
        provider_id: int,
        service_id: int,
        start_time: datetime,
        notes: str | None = None,
    ) -> BookingResult:
        return self.bookings.create(client_id, provider_id, service_id, start_time, notes)

    def reschedule_booking(self, appointment_id: int, new_start_time: datetime) -> BookingResult:
        return self.bookings.reschedule(appointment_id, new_start_time)

    def cancel_booking(self, appointment_id: int, reason: str | None = None) -> BookingResult:
        return self.bookings.cancel(appointment_id, reason)

    def complete_booking(self, appointment_id: int) -> BookingResult:
        return self.bookings.complete(appointment_id)

    def mark_no_show(self, appointment_id: int) -> BookingResult:
        return self.bookings.mark_no_show(appointment_id)

    def rebook(self, previous_appointment_id: int, start_time: datetime, notes: str | None = None) -> BookingResult:
        return self.bookings.rebook(previous_appointment_id, start_time, notes)

    def get_appointment(self, appointment_id: int) -> Appointment | None:
        with storage_errors(self.db):
            return self.appointments.get(appointment_id)

    def provider_schedule(self, provider_id: int, start: datetime, end: datetime) -> list[Appointment]:
        with storage_errors(self.db):
            return self.appointments.for_provider(provider_id, start, end)

    def client_appointments(self, client_id: int) -> list[Appointment]:
        with storage_errors(self.db):
            return self.appointments.for_client(client_id)
