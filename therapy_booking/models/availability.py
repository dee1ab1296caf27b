"""Availability model definitions."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Time,
    UniqueConstraint,
    func,
)

from therapy_booking.database import Base


class Availability(Base):
    """A provider's working hours, either recurring by weekday or for one date.

    Exactly one of ``day_of_week`` (0 = Monday) and ``specific_date`` is set.
    """
    __tablename__ = "availability"
    __table_args__ = (
        CheckConstraint(
            "(day_of_week IS NULL) <> (specific_date IS NULL)",
            name="ck_availability_rule_kind",
        ),
        CheckConstraint("day_of_week IS NULL OR (day_of_week >= 0 AND day_of_week <= 6)", name="ck_availability_weekday"),
        UniqueConstraint("provider_id", "day_of_week", name="uq_availability_provider_weekday"),
        UniqueConstraint("provider_id", "specific_date", name="uq_availability_provider_date"),
    )

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True)
    day_of_week = Column(Integer)
    specific_date = Column(Date)
    is_available = Column(Boolean, nullable=False, default=True)
    start_time = Column(Time)
    end_time = Column(Time)
    break_start_time = Column(Time)
    break_end_time = Column(Time)
    notes = Column(String(500))
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())
