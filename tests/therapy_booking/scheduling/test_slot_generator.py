from datetime import date, datetime, time, timedelta, timezone

import pytest

from therapy_booking.core.errors import ErrorKind
from therapy_booking.scheduling.conflicts import intervals_overlap
from therapy_booking.scheduling.engine import BookingEngine
from therapy_booking.scheduling.slots import SlotGenerator

MONDAY = date(2026, 1, 5)


def at(hour: int, minute: int = 0, day: date = MONDAY) -> datetime:
    return datetime.combine(day, time(hour, minute))


class StepClock:
    """Fake monotonic clock that advances one second per reading."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        current = self.now
        self.now += 1
        return current


def slot_starts(search) -> list[datetime]:
    return [slot.start_time for slot in search.slots]


def test_weekday_window_yields_every_fitting_start(db, practice) -> None:
    provider, service, _ = practice

    search = SlotGenerator(db).generate(service.id, provider.id, at(9), at(12))

    assert search.ok
    assert not search.truncated
    assert slot_starts(search) == [at(9), at(9, 30), at(10), at(10, 30), at(11)]
    first = search.slots[0]
    assert first.end_time == at(10)
    assert first.duration_minutes == 60
    assert first.provider_name == 'Ada Lovelace'
    assert first.service_name == 'Individual therapy'


def test_existing_appointment_removes_overlapping_starts(db, seed, practice) -> None:
    provider, service, client = practice
    seed.appointment(client, provider, service, at(10))

    search = SlotGenerator(db).generate(service.id, provider.id, at(9), at(12))

    assert slot_starts(search) == [at(9), at(11)]


def test_cancelled_appointment_does_not_block_slots(db, seed, practice) -> None:
    provider, service, client = practice
    seed.appointment(client, provider, service, at(10), status='cancelled')

    search = SlotGenerator(db).generate(service.id, provider.id, at(9), at(12))

    assert len(search.slots) == 5


def test_unavailable_override_empties_the_day(db, seed, practice) -> None:
    provider, service, _ = practice
    seed.override(provider, MONDAY, False)

    search = SlotGenerator(db).generate(service.id, provider.id, at(9), at(12))

    assert search.ok
    assert search.slots == []


def test_slots_never_touch_the_break(db, seed) -> None:
    service = seed.service()
    provider = seed.provider(services=[service])
    seed.weekday_rule(provider, 0, time(9, 0), time(17, 0), time(12, 0), time(13, 0))

    search = SlotGenerator(db).generate(service.id, provider.id, at(0), at(23))

    assert slot_starts(search) == [
        at(9), at(9, 30), at(10), at(10, 30), at(11),
        at(13), at(13, 30), at(14), at(14, 30), at(15), at(15, 30), at(16),
    ]
    assert not any(intervals_overlap(slot.start_time, slot.end_time, at(12), at(13)) for slot in search.slots)


def test_break_covering_the_whole_window_yields_no_slots(db, seed) -> None:
    service = seed.service()
    provider = seed.provider(services=[service])
    seed.weekday_rule(provider, 0, time(9, 0), time(12, 0), time(9, 0), time(12, 0))

    search = SlotGenerator(db).generate(service.id, provider.id, at(9), at(12))

    assert search.ok
    assert search.slots == []


def test_query_range_clamps_window_across_days(db, seed, practice) -> None:
    provider, service, _ = practice
    tuesday = MONDAY + timedelta(days=1)
    seed.weekday_rule(provider, 1, time(9, 0), time(12, 0))

    search = SlotGenerator(db).generate(service.id, provider.id, at(10), at(10, day=tuesday))

    assert slot_starts(search) == [at(10), at(10, 30), at(11), at(9, day=tuesday)]


def test_custom_increment_changes_step(db, practice) -> None:
    provider, service, _ = practice

    search = SlotGenerator(db, increment_minutes=60).generate(service.id, provider.id, at(9), at(12))

    assert slot_starts(search) == [at(9), at(10), at(11)]


def test_slots_are_ordered_by_start_then_provider_name(db, seed) -> None:
    service = seed.service()
    zed = seed.provider(first_name='Zed', last_name='Adams', services=[service])
    amy = seed.provider(first_name='Amy', last_name='Brown', services=[service])
    seed.weekday_rule(zed, 0, time(9, 0), time(11, 0))
    seed.weekday_rule(amy, 0, time(9, 30), time(11, 0))

    search = SlotGenerator(db).generate(service.id, None, at(9), at(11))

    assert [(slot.start_time, slot.provider_name) for slot in search.slots] == [
        (at(9), 'Zed Adams'),
        (at(9, 30), 'Amy Brown'),
        (at(9, 30), 'Zed Adams'),
        (at(10), 'Amy Brown'),
        (at(10), 'Zed Adams'),
    ]


def test_search_without_provider_skips_inactive_and_non_offering_providers(db, seed, practice) -> None:
    provider, service, _ = practice
    other_service = seed.service(name='Couples therapy', duration_minutes=90)
    inactive = seed.provider(first_name='Ina', last_name='Active', services=[service], is_active=False)
    elsewhere = seed.provider(first_name='Eli', last_name='Where', services=[other_service])
    seed.weekday_rule(inactive, 0, time(9, 0), time(12, 0))
    seed.weekday_rule(elsewhere, 0, time(9, 0), time(12, 0))

    search = SlotGenerator(db).generate(service.id, None, at(9), at(12))

    assert {slot.provider_id for slot in search.slots} == {provider.id}


@pytest.mark.parametrize(
    ('start', 'end'),
    [
        (at(12), at(9)),
        (at(9), at(9)),
    ],
)
def test_empty_range_is_a_validation_error(db, practice, start: datetime, end: datetime) -> None:
    provider, service, _ = practice

    search = SlotGenerator(db).generate(service.id, provider.id, start, end)

    assert search.error_kind == ErrorKind.VALIDATION
    assert search.slots == []
    assert not search.ok


def test_range_longer_than_search_limit_is_rejected(db, practice) -> None:
    provider, service, _ = practice

    search = SlotGenerator(db).generate(service.id, provider.id, at(9), at(9) + timedelta(days=400))

    assert search.error_kind == ErrorKind.VALIDATION


def test_timezone_aware_range_is_rejected(db, practice) -> None:
    provider, service, _ = practice
    start = at(9).replace(tzinfo=timezone.utc)

    search = SlotGenerator(db).generate(service.id, provider.id, start, start + timedelta(hours=3))

    assert search.error_kind == ErrorKind.VALIDATION


def test_unknown_service_is_distinguishable_from_no_slots(db, practice) -> None:
    provider, _, _ = practice

    search = SlotGenerator(db).generate(999, provider.id, at(9), at(12))

    assert search.error_kind == ErrorKind.NOT_FOUND
    assert search.slots == []


def test_unknown_provider_is_not_found(db, practice) -> None:
    _, service, _ = practice

    search = SlotGenerator(db).generate(service.id, 999, at(9), at(12))

    assert search.error_kind == ErrorKind.NOT_FOUND


def test_provider_not_offering_service_is_a_validation_error(db, seed, practice) -> None:
    provider, _, _ = practice
    other_service = seed.service(name='Group session')

    search = SlotGenerator(db).generate(other_service.id, provider.id, at(9), at(12))

    assert search.error_kind == ErrorKind.VALIDATION


def test_inactive_service_is_a_validation_error(db, seed) -> None:
    service = seed.service(is_active=False)
    provider = seed.provider(services=[service])

    search = SlotGenerator(db).generate(service.id, provider.id, at(9), at(12))

    assert search.error_kind == ErrorKind.VALIDATION


def test_deadline_returns_validated_partial_result(db, practice) -> None:
    provider, service, _ = practice
    generator = SlotGenerator(db, clock=StepClock())

    # Readings: 0 before the day, 1 and 2 before the first two starts, 3 stops the search.
    search = generator.generate(service.id, provider.id, at(9), at(12), deadline=3)

    assert search.truncated
    assert search.ok
    assert slot_starts(search) == [at(9), at(9, 30)]


def test_passed_deadline_returns_empty_truncated_result(db, practice) -> None:
    provider, service, _ = practice

    search = SlotGenerator(db, clock=StepClock()).generate(service.id, provider.id, at(9), at(12), deadline=0)

    assert search.truncated
    assert search.slots == []


def test_every_generated_slot_can_be_booked(db, seed) -> None:
    service = seed.service(duration_minutes=45)
    provider = seed.provider(services=[service])
    client = seed.client()
    seed.weekday_rule(provider, 0, time(9, 0), time(17, 0), time(12, 0), time(13, 0))
    seed.appointment(client, provider, service, at(14))
    engine = BookingEngine(db)

    search = engine.generate_slots(service.id, provider.id, at(0), at(23, 59))

    assert search.slots
    for slot in search.slots:
        booked = engine.create_booking(client.id, provider.id, service.id, slot.start_time)
        assert booked, booked.error_message
        assert engine.cancel_booking(booked.appointment_id)
