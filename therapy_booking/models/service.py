"""Service model definitions."""

from sqlalchemy import Boolean, CheckConstraint, Column, Integer, String

from therapy_booking.database import Base


class Service(Base):
    """A bookable treatment with a fixed duration."""
    __tablename__ = "services"
    __table_args__ = (
        CheckConstraint("duration_minutes >= 1", name="ck_services_duration_positive"),
    )

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
