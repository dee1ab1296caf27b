"""Effective working hours of a provider.

A provider's day is described by at most two rules: a recurring rule for the
weekday and an override for the specific date. The override always wins,
including when it marks the day off. No rule means no availability.
"""

import logging
from datetime import date, datetime, time, timedelta

from sqlalchemy.orm import Session

from therapy_booking.core.errors import NotFoundError, SchedulingValidationError
from therapy_booking.models.availability import Availability
from therapy_booking.scheduling.conflicts import intervals_overlap
from therapy_booking.scheduling.locks import ProviderLockRegistry, provider_locks
from therapy_booking.scheduling.stores import (
    AppointmentStore,
    AvailabilityStore,
    DirectoryStore,
    commit,
    provider_write,
    storage_errors,
)
from therapy_booking.scheduling.types import (
    AvailabilityRule,
    BlockedTime,
    DateOverride,
    EffectiveWindow,
    RecurringRule,
    WorkingHours,
)

logger = logging.getLogger(__name__)

DEFAULT_OPEN_TIME = time(9, 0)
DEFAULT_CLOSE_TIME = time(17, 0)
DEFAULT_BREAK_START = time(12, 0)
DEFAULT_BREAK_END = time(13, 0)
DEFAULT_WORKING_WEEKDAYS = range(0, 5)
MAX_BLOCK_DAYS = 366


def validate_hours(
    is_available: bool,
    start_time: time | None,
    end_time: time | None,
    break_start_time: time | None = None,
    break_end_time: time | None = None,
) -> WorkingHours | None:
    """Check a rule's times and return them as WorkingHours (None for a day off)."""
    if (break_start_time is None) != (break_end_time is None):
        raise SchedulingValidationError('Both break start time and break end time must be provided or neither.')

    if not is_available:
        return None

    if start_time is None or end_time is None:
        raise SchedulingValidationError('Start time and end time must be provided when setting availability to true.')

    if start_time >= end_time:
        raise SchedulingValidationError('Start time must be before end time.')

    if break_start_time is not None and break_end_time is not None:
        if break_start_time >= break_end_time:
            raise SchedulingValidationError('Break start time must be before break end time.')
        if break_start_time < start_time or break_end_time > end_time:
            raise SchedulingValidationError('The break must fall within the working hours.')

    return WorkingHours(
        start=start_time,
        end=end_time,
        break_start=break_start_time,
        break_end=break_end_time,
    )


def _hours_from_row(row: Availability) -> WorkingHours | None:
    if not row.is_available:
        return None
    if row.start_time is None or row.end_time is None:
        logger.warning('Availability %s is marked available without working hours; treating it as a day off', row.id)
        return None
    return WorkingHours(
        start=row.start_time,
        end=row.end_time,
        break_start=row.break_start_time,
        break_end=row.break_end_time,
    )


def rule_from_row(row: Availability) -> RecurringRule | DateOverride:
    hours = _hours_from_row(row)
    if row.specific_date is not None:
        return DateOverride(provider_id=row.provider_id, date=row.specific_date, hours=hours, notes=row.notes)
    return RecurringRule(provider_id=row.provider_id, weekday=row.day_of_week, hours=hours, notes=row.notes)


def anchor_window(rule: RecurringRule | DateOverride, day: date) -> EffectiveWindow | None:
    """Place a rule's working hours on a calendar date."""
    hours = rule.hours
    if hours is None:
        return None

    break_start = break_end = None
    if hours.has_break:
        break_start = datetime.combine(day, hours.break_start)
        break_end = datetime.combine(day, hours.break_end)

    return EffectiveWindow(
        provider_id=rule.provider_id,
        date=day,
        start=datetime.combine(day, hours.start),
        end=datetime.combine(day, hours.end),
        break_start=break_start,
        break_end=break_end,
        source=rule.kind,
        notes=rule.notes,
    )


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


class AvailabilityResolver:
    def __init__(self, db: Session, locks: ProviderLockRegistry | None = None):
        self.db = db
        self.locks = locks or provider_locks
        self.rules = AvailabilityStore(db)
        self.directory = DirectoryStore(db)
        self.appointments = AppointmentStore(db)

    def rule_for(self, provider_id: int, day: date) -> RecurringRule | DateOverride | None:
        row = self.rules.get_override_for_date(provider_id, day)
        if row is None:
            row = self.rules.get_rule_for_weekday(provider_id, day.weekday())
        if row is None:
            return None
        return rule_from_row(row)

    def resolve(self, provider_id: int, day: date) -> EffectiveWindow | None:
        """Return the provider's working window on ``day``, or None when unavailable.

        An unknown provider raises NotFoundError rather than reading as a day off.
        """
        with storage_errors(self.db):
            self._require_provider(provider_id)
            rule = self.rule_for(provider_id, day)
        if rule is None:
            return None
        return anchor_window(rule, day)

    def list_rules(self, provider_id: int) -> list[AvailabilityRule]:
        with storage_errors(self.db):
            self._require_provider(provider_id)
            return [rule_from_row(row) for row in self.rules.list_for_provider(provider_id)]

    def set_weekday_rule(
        self,
        provider_id: int,
        weekday: int,
        is_available: bool,
        start_time: time | None = None,
        end_time: time | None = None,
        break_start_time: time | None = None,
        break_end_time: time | None = None,
        notes: str | None = None,
    ) -> RecurringRule:
        if weekday not in range(7):
            raise SchedulingValidationError('Weekday must be between 0 (Monday) and 6 (Sunday).')
        hours = validate_hours(is_available, start_time, end_time, break_start_time, break_end_time)

        with storage_errors(self.db):
            self._require_provider(provider_id)
            row = self.rules.upsert_weekday(
                provider_id,
                weekday,
                hours is not None,
                *self._columns(hours),
                notes,
            )
            commit(self.db)
            logger.info('Saved recurring availability for provider %s on weekday %s', provider_id, weekday)
            return rule_from_row(row)

    def set_date_override(
        self,
        provider_id: int,
        day: date,
        is_available: bool,
        start_time: time | None = None,
        end_time: time | None = None,
        break_start_time: time | None = None,
        break_end_time: time | None = None,
        notes: str | None = None,
    ) -> DateOverride:
        """Replace the provider's hours for one date.

        Rejected when an active appointment on that date would end up outside
        the new hours or inside the new break.
        """
        hours = validate_hours(is_available, start_time, end_time, break_start_time, break_end_time)

        with storage_errors(self.db), provider_write(self.db, self.locks, provider_id):
            self._require_provider(provider_id)
            self._reject_stranded(
                provider_id,
                day,
                anchor_window(DateOverride(provider_id=provider_id, date=day, hours=hours), day),
            )

            row = self.rules.upsert_override(
                provider_id,
                day,
                hours is not None,
                *self._columns(hours),
                notes,
            )
            commit(self.db)
            logger.info('Saved availability override for provider %s on %s', provider_id, day)
            return rule_from_row(row)

    def clear_date_override(self, provider_id: int, day: date) -> EffectiveWindow | None:
        """Remove the override for ``day`` so the weekday rule applies again.

        Returns the window now in effect. Rejected when an active appointment
        on that date falls outside the recurring hours.
        """
        with storage_errors(self.db), provider_write(self.db, self.locks, provider_id):
            self._require_provider(provider_id)
            if self.rules.get_override_for_date(provider_id, day) is None:
                raise NotFoundError(f'No availability override for provider {provider_id} on {day.isoformat()}.')

            weekday_row = self.rules.get_rule_for_weekday(provider_id, day.weekday())
            window = anchor_window(rule_from_row(weekday_row), day) if weekday_row is not None else None
            self._reject_stranded(provider_id, day, window)

            self.rules.delete_override(provider_id, day)
            commit(self.db)

        logger.info('Cleared availability override for provider %s on %s', provider_id, day)
        return window

    def clear_weekday_rule(self, provider_id: int, weekday: int) -> None:
        """Remove the recurring rule for ``weekday``.

        Dates without an override on that weekday become unavailable, so any
        active appointment on such a date blocks the removal.
        """
        if weekday not in range(7):
            raise SchedulingValidationError('Weekday must be between 0 (Monday) and 6 (Sunday).')

        with storage_errors(self.db), provider_write(self.db, self.locks, provider_id):
            self._require_provider(provider_id)
            if self.rules.get_rule_for_weekday(provider_id, weekday) is None:
                raise NotFoundError(f'No recurring availability for provider {provider_id} on weekday {weekday}.')

            overridden = self.rules.override_dates(provider_id)
            stranded = [
                appointment
                for appointment in self.appointments.active_for_provider(provider_id)
                if appointment.start_time.weekday() == weekday and appointment.start_time.date() not in overridden
            ]
            if stranded:
                raise SchedulingValidationError(
                    f'There are {len(stranded)} existing appointments that depend on this weekday rule. '
                    'Cancel them or add date overrides first.'
                )

            self.rules.delete_weekday_rule(provider_id, weekday)
            commit(self.db)

        logger.info('Cleared recurring availability for provider %s on weekday %s', provider_id, weekday)

    def block_time(
        self,
        provider_id: int,
        start_time: datetime,
        end_time: datetime,
        reason: str | None = None,
        cancel_existing: bool = False,
    ) -> BlockedTime:
        """Mark every date touched by [start_time, end_time) as a day off.

        Active appointments on those dates block the request unless
        ``cancel_existing`` is set, in which case they are cancelled with the
        reason recorded in their notes.
        """
        if start_time >= end_time:
            raise SchedulingValidationError('Start time must be before end time.')

        first_day = start_time.date()
        last_day = (end_time - timedelta(microseconds=1)).date()
        if (last_day - first_day).days >= MAX_BLOCK_DAYS:
            raise SchedulingValidationError(f'Time can be blocked for at most {MAX_BLOCK_DAYS} days at once.')

        with storage_errors(self.db), provider_write(self.db, self.locks, provider_id):
            self._require_provider(provider_id)
            range_start, _ = _day_bounds(first_day)
            _, range_end = _day_bounds(last_day)
            booked = self.appointments.find_overlapping(provider_id, range_start, range_end)

            if booked and not cancel_existing:
                raise SchedulingValidationError(
                    f'There are {len(booked)} existing appointments during this time period. '
                    'Set cancel_existing to cancel them.'
                )

            note = f'Cancelled due to provider unavailability: {reason}' if reason else 'Cancelled due to provider unavailability.'
            for appointment in booked:
                self.appointments.mark_cancelled(appointment, reason, note)

            dates = []
            day = first_day
            while day <= last_day:
                self.rules.upsert_override(provider_id, day, False, None, None, None, None, reason)
                dates.append(day)
                day += timedelta(days=1)

            commit(self.db)

        cancelled_ids = [appointment.id for appointment in booked]
        logger.info(
            'Blocked %s day(s) for provider %s, cancelled appointments %s',
            len(dates),
            provider_id,
            cancelled_ids,
        )
        return BlockedTime(provider_id=provider_id, dates=dates, cancelled_appointment_ids=cancelled_ids)

    def apply_default_week(self, provider_id: int) -> list[RecurringRule]:
        """Monday to Friday 9-5 with a lunch break, weekends off."""
        rules = []
        with storage_errors(self.db):
            self._require_provider(provider_id)
            for weekday in range(7):
                if weekday in DEFAULT_WORKING_WEEKDAYS:
                    row = self.rules.upsert_weekday(
                        provider_id,
                        weekday,
                        True,
                        DEFAULT_OPEN_TIME,
                        DEFAULT_CLOSE_TIME,
                        DEFAULT_BREAK_START,
                        DEFAULT_BREAK_END,
                        'Default availability',
                    )
                else:
                    row = self.rules.upsert_weekday(
                        provider_id, weekday, False, None, None, None, None, 'Weekend - not available by default'
                    )
                rules.append(rule_from_row(row))
            commit(self.db)
        return rules

    def _require_provider(self, provider_id: int):
        provider = self.directory.get_provider(provider_id)
        if provider is None:
            raise NotFoundError(f'Provider with ID {provider_id} not found.')
        return provider

    def _reject_stranded(self, provider_id: int, day: date, window: EffectiveWindow | None) -> None:
        """Raise when an active appointment on ``day`` would fall outside ``window``."""
        day_start, day_end = _day_bounds(day)
        booked = self.appointments.find_overlapping(provider_id, day_start, day_end)
        stranded = [appointment for appointment in booked if not _fits(window, appointment.start_time, appointment.end_time)]
        if stranded:
            raise SchedulingValidationError(
                f'There are {len(stranded)} existing appointments outside the new hours on {day.isoformat()}. '
                'Block the time with cancel_existing to cancel them first.'
            )

    @staticmethod
    def _columns(hours: WorkingHours | None) -> tuple:
        if hours is None:
            return None, None, None, None
        return hours.start, hours.end, hours.break_start, hours.break_end


def _fits(window: EffectiveWindow | None, start: datetime, end: datetime) -> bool:
    if window is None:
        return False
    if start < window.start or end > window.end:
        return False
    if window.has_break and intervals_overlap(start, end, window.break_start, window.break_end):
        return False
    return True
