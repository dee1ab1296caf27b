"""Overlap detection between appointment intervals.

Intervals are half-open: an appointment ending at 10:00 does not conflict
with one starting at 10:00.
"""

import logging
from datetime import datetime
from typing import Iterable

from sqlalchemy.orm import Session

from therapy_booking.models.appointment import Appointment
from therapy_booking.scheduling.stores import AppointmentStore

logger = logging.getLogger(__name__)


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and end_a > start_b


def overlaps_any(busy: Iterable[tuple[datetime, datetime]], start: datetime, end: datetime) -> bool:
    return any(intervals_overlap(start, end, busy_start, busy_end) for busy_start, busy_end in busy)


class ConflictChecker:
    def __init__(self, db: Session):
        self.appointments = AppointmentStore(db)

    def find_conflicts(
        self,
        provider_id: int,
        start_time: datetime,
        end_time: datetime,
        exclude_appointment_id: int | None = None,
    ) -> list[Appointment]:
        return self.appointments.find_overlapping(
            provider_id,
            start_time,
            end_time,
            exclude_id=exclude_appointment_id,
        )

    def has_conflict(
        self,
        provider_id: int,
        start_time: datetime,
        end_time: datetime,
        exclude_appointment_id: int | None = None,
    ) -> bool:
        conflicts = self.find_conflicts(provider_id, start_time, end_time, exclude_appointment_id)
        if conflicts:
            logger.debug(
                'Provider %s is busy between %s and %s (appointments %s)',
                provider_id,
                start_time,
                end_time,
                [appointment.id for appointment in conflicts],
            )
        return bool(conflicts)

    def busy_intervals(self, provider_id: int, start_time: datetime, end_time: datetime) -> list[tuple[datetime, datetime]]:
        """Active appointment intervals of a provider touching [start_time, end_time).

        Lets a caller test many candidate intervals against one read of the
        current bookings.
        """
        return self.appointments.busy_intervals(provider_id, start_time, end_time)
