import os
from datetime import date, datetime, time, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from therapy_booking.database import Base  # noqa: E402
from therapy_booking.models.appointment import Appointment  # noqa: E402
from therapy_booking.models.availability import Availability  # noqa: E402
from therapy_booking.models.client import Client  # noqa: E402
from therapy_booking.models.provider import Provider, provider_services  # noqa: E402
from therapy_booking.models.service import Service  # noqa: E402


class Seeder:
    """Inserts directory rows, availability rules and appointments for a test."""

    def __init__(self, db):
        self.db = db

    def service(self, name: str = 'Individual therapy', duration_minutes: int = 60, is_active: bool = True) -> Service:
        service = Service(name=name, duration_minutes=duration_minutes, is_active=is_active)
        self.db.add(service)
        self.db.commit()
        return service

    def provider(
        self,
        first_name: str = 'Ada',
        last_name: str = 'Lovelace',
        services=(),
        is_active: bool = True,
    ) -> Provider:
        provider = Provider(first_name=first_name, last_name=last_name, is_active=is_active)
        self.db.add(provider)
        self.db.flush()
        for service in services:
            self.db.execute(provider_services.insert().values(provider_id=provider.id, service_id=service.id))
        self.db.commit()
        return provider

    def client(self, name: str = 'Sam Client', email: str = 'sam@example.com') -> Client:
        client = Client(name=name, email=email)
        self.db.add(client)
        self.db.commit()
        return client

    def weekday_rule(
        self,
        provider: Provider,
        weekday: int,
        start_time: time | None,
        end_time: time | None,
        break_start_time: time | None = None,
        break_end_time: time | None = None,
        is_available: bool = True,
    ) -> Availability:
        row = Availability(
            provider_id=provider.id,
            day_of_week=weekday,
            specific_date=None,
            is_available=is_available,
            start_time=start_time,
            end_time=end_time,
            break_start_time=break_start_time,
            break_end_time=break_end_time,
        )
        self.db.add(row)
        self.db.commit()
        return row

    def override(
        self,
        provider: Provider,
        day: date,
        is_available: bool,
        start_time: time | None = None,
        end_time: time | None = None,
        notes: str | None = None,
    ) -> Availability:
        row = Availability(
            provider_id=provider.id,
            day_of_week=None,
            specific_date=day,
            is_available=is_available,
            start_time=start_time,
            end_time=end_time,
            notes=notes,
        )
        self.db.add(row)
        self.db.commit()
        return row

    def appointment(
        self,
        client: Client,
        provider: Provider,
        service: Service,
        start_time: datetime,
        status: str = 'scheduled',
        notes: str | None = None,
    ) -> Appointment:
        appointment = Appointment(
            client_id=client.id,
            provider_id=provider.id,
            service_id=service.id,
            start_time=start_time,
            end_time=start_time + timedelta(minutes=service.duration_minutes),
            status=status,
            notes=notes,
        )
        self.db.add(appointment)
        self.db.commit()
        return appointment


@pytest.fixture
def db():
    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def seed(db) -> Seeder:
    return Seeder(db)


@pytest.fixture
def practice(seed):
    """One provider offering a 60 minute service Mondays 09:00-12:00, and one client."""
    service = seed.service()
    provider = seed.provider(services=[service])
    client = seed.client()
    seed.weekday_rule(provider, 0, time(9, 0), time(12, 0))
    return provider, service, client
