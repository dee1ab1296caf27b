"""Client model definitions."""

from sqlalchemy import Column, Integer, String

from therapy_booking.database import Base


class Client(Base):
    """Represents a person booking appointments."""
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    email = Column(String(100), index=True)
