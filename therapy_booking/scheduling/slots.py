"""
Slot generation

Turns resolved working windows into bookable start times for one service:

    1. validate the query range
    2. load the service and the candidate providers
    3. for each provider and each date in the range, resolve the working window
    4. step through the window at SLOT_INCREMENT_MINUTES, clamped to the query range
    5. drop candidates touching the break or an active appointment
    6. deduplicate, then order by start time and provider name

A search can be bounded by a deadline (a ``time.monotonic()`` value). When it
passes, the slots found so far are returned with ``truncated`` set; a slot is
only ever emitted after all of its checks have run.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.orm import Session

from therapy_booking.core import config
from therapy_booking.core.errors import NotFoundError, SchedulingError, SchedulingValidationError
from therapy_booking.models.provider import Provider
from therapy_booking.models.service import Service
from therapy_booking.scheduling.availability import AvailabilityResolver
from therapy_booking.scheduling.conflicts import ConflictChecker, intervals_overlap, overlaps_any
from therapy_booking.scheduling.stores import DirectoryStore, storage_errors
from therapy_booking.scheduling.types import AvailableSlot, EffectiveWindow, SlotSearch

logger = logging.getLogger(__name__)


class _DeadlineExceeded(Exception):
    pass


class SlotGenerator:
    def __init__(
        self,
        db: Session,
        increment_minutes: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.db = db
        self.increment = timedelta(minutes=increment_minutes or config.SLOT_INCREMENT_MINUTES)
        self.clock = clock
        self.directory = DirectoryStore(db)
        self.resolver = AvailabilityResolver(db)
        self.conflicts = ConflictChecker(db)

    def generate(
        self,
        service_id: int,
        provider_id: int | None,
        start: datetime,
        end: datetime,
        deadline: float | None = None,
    ) -> SlotSearch:
        try:
            self._validate_range(start, end)
        except SchedulingError as exc:
            return SlotSearch.failed(exc)

        if deadline is None and config.SLOT_SEARCH_BUDGET_SECONDS is not None:
            deadline = self.clock() + config.SLOT_SEARCH_BUDGET_SECONDS

        with storage_errors(self.db):
            try:
                service = self._load_service(service_id)
                providers = self._candidate_providers(service, provider_id)
            except SchedulingError as exc:
                logger.info('Slot search rejected: %s', exc.message)
                return SlotSearch.failed(exc)

            slots: dict[tuple[int, datetime], AvailableSlot] = {}
            truncated = False
            try:
                for provider in providers:
                    self._collect_provider_slots(provider, service, start, end, deadline, slots)
            except _DeadlineExceeded:
                truncated = True
                logger.warning(
                    'Slot search for service %s hit its deadline after %s slots',
                    service_id,
                    len(slots),
                )

        ordered = sorted(slots.values(), key=lambda slot: (slot.start_time, slot.provider_name, slot.provider_id))
        return SlotSearch(slots=ordered, truncated=truncated)

    def _validate_range(self, start: datetime, end: datetime) -> None:
        if start.tzinfo is not None or end.tzinfo is not None:
            raise SchedulingValidationError('Search range must use local times without a timezone offset.')
        if start >= end:
            raise SchedulingValidationError('The start of the search range must be before its end.')
        if (end.date() - start.date()).days >= config.MAX_SLOT_SEARCH_DAYS:
            raise SchedulingValidationError(f'Slots can be searched at most {config.MAX_SLOT_SEARCH_DAYS} days at a time.')

    def _load_service(self, service_id: int) -> Service:
        service = self.directory.get_service(service_id)
        if service is None:
            raise NotFoundError(f'Service with ID {service_id} not found.')
        if not service.is_active:
            raise SchedulingValidationError('The selected service is not currently offered.')
        return service

    def _candidate_providers(self, service: Service, provider_id: int | None) -> list[Provider]:
        if provider_id is None:
            return self.directory.providers_offering(service.id)

        provider = self.directory.get_provider(provider_id)
        if provider is None:
            raise NotFoundError(f'Provider with ID {provider_id} not found.')
        if not provider.is_active:
            raise SchedulingValidationError('The selected provider is not currently taking appointments.')
        if not self.directory.offers_service(provider.id, service.id):
            raise SchedulingValidationError('The selected provider does not offer this service.')
        return [provider]

    def _collect_provider_slots(
        self,
        provider: Provider,
        service: Service,
        start: datetime,
        end: datetime,
        deadline: float | None,
        slots: dict[tuple[int, datetime], AvailableSlot],
    ) -> None:
        day = start.date()
        while day <= end.date():
            self._check_deadline(deadline)
            window = self.resolver.resolve(provider.id, day)
            if window is not None:
                for slot in self._window_slots(provider, service, window, start, end, deadline):
                    slots.setdefault((slot.provider_id, slot.start_time), slot)
            day += timedelta(days=1)

    def _window_slots(
        self,
        provider: Provider,
        service: Service,
        window: EffectiveWindow,
        start: datetime,
        end: datetime,
        deadline: float | None,
    ):
        duration = timedelta(minutes=service.duration_minutes)
        limit = min(window.end, end)
        current = max(window.start, start)

        if current + duration > limit:
            return

        busy = self.conflicts.busy_intervals(provider.id, current, limit)

        while current + duration <= limit:
            self._check_deadline(deadline)
            slot_end = current + duration

            if window.has_break and intervals_overlap(current, slot_end, window.break_start, window.break_end):
                current += self.increment
                continue

            if not overlaps_any(busy, current, slot_end):
                yield AvailableSlot(
                    provider_id=provider.id,
                    provider_name=provider.display_name,
                    service_id=service.id,
                    service_name=service.name,
                    start_time=current,
                    end_time=slot_end,
                    duration_minutes=service.duration_minutes,
                )

            current += self.increment

    def _check_deadline(self, deadline: float | None) -> None:
        if deadline is not None and self.clock() >= deadline:
            raise _DeadlineExceeded()
