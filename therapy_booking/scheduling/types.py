"""Value types passed between the scheduling components and their callers."""

from datetime import date, datetime, time
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from therapy_booking.core.errors import ErrorKind, SchedulingError


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


# Statuses that hold a provider's time.
ACTIVE_STATUSES = frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.RESCHEDULED})
TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW}
)


class WorkingHours(BaseModel):
    """Time-of-day bounds of a working day, with an optional break."""

    model_config = ConfigDict(frozen=True)

    start: time
    end: time
    break_start: time | None = None
    break_end: time | None = None

    @property
    def has_break(self) -> bool:
        return self.break_start is not None and self.break_end is not None


class RecurringRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["recurring"] = "recurring"
    provider_id: int
    weekday: int
    # None marks the weekday as a day off.
    hours: WorkingHours | None = None
    notes: str | None = None


class DateOverride(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["override"] = "override"
    provider_id: int
    date: date
    hours: WorkingHours | None = None
    notes: str | None = None


AvailabilityRule = Annotated[Union[RecurringRule, DateOverride], Field(discriminator="kind")]


class EffectiveWindow(BaseModel):
    """Working hours of one provider on one date, anchored to absolute timestamps."""

    model_config = ConfigDict(frozen=True)

    provider_id: int
    date: date
    start: datetime
    end: datetime
    break_start: datetime | None = None
    break_end: datetime | None = None
    source: Literal["recurring", "override"]
    notes: str | None = None

    @property
    def has_break(self) -> bool:
        return self.break_start is not None and self.break_end is not None


class BlockedTime(BaseModel):
    provider_id: int
    dates: list[date]
    cancelled_appointment_ids: list[int] = Field(default_factory=list)


class AvailableSlot(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider_id: int
    provider_name: str
    service_id: int
    service_name: str
    start_time: datetime
    end_time: datetime
    duration_minutes: int


class SlotSearch(BaseModel):
    """Outcome of a slot search.

    ``error_kind`` is set when the query itself was rejected, so an empty
    ``slots`` list on its own always means "nothing free". ``truncated`` is
    set when the search deadline passed before every date was examined.
    """

    slots: list[AvailableSlot] = Field(default_factory=list)
    truncated: bool = False
    error_kind: ErrorKind | None = None
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_kind is None

    @classmethod
    def failed(cls, error: SchedulingError) -> "SlotSearch":
        return cls(error_kind=error.kind, error_message=error.message)


class BookingResult(BaseModel):
    success: bool
    appointment_id: int | None = None
    status: AppointmentStatus | None = None
    error_kind: ErrorKind | None = None
    error_message: str | None = None

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def succeeded(cls, appointment_id: int, status: AppointmentStatus) -> "BookingResult":
        return cls(success=True, appointment_id=appointment_id, status=status)

    @classmethod
    def failed(cls, error: SchedulingError, appointment_id: int | None = None) -> "BookingResult":
        return cls(
            success=False,
            appointment_id=appointment_id,
            error_kind=error.kind,
            error_message=error.message,
        )
