import pytest
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.pool import StaticPool

from therapy_booking import database


@pytest.fixture
def legacy_engine(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(database, '_appointment_schema_checked', False)
    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    with engine.begin() as connection:
        connection.execute(
            text(
                'CREATE TABLE appointments ('
                'id INTEGER PRIMARY KEY, client_id INTEGER, provider_id INTEGER, service_id INTEGER, '
                'start_time TIMESTAMP, end_time TIMESTAMP, status VARCHAR(20), notes VARCHAR(1000), '
                'created_at TIMESTAMP, updated_at TIMESTAMP)'
            )
        )
    try:
        yield engine
    finally:
        engine.dispose()


def test_ensure_appointment_schema_adds_missing_columns_and_indexes(legacy_engine) -> None:
    database.ensure_appointment_schema(bind=legacy_engine)

    inspector = inspect(legacy_engine)
    columns = {column['name'] for column in inspector.get_columns('appointments')}
    indexes = {index['name'] for index in inspector.get_indexes('appointments')}

    assert {'cancelled_at', 'cancellation_reason', 'rebooked_from_id'} <= columns
    assert {'idx_appointments_provider_range', 'idx_appointments_client_start'} <= indexes
    assert database._appointment_schema_checked


def test_ensure_appointment_schema_runs_once(legacy_engine) -> None:
    database.ensure_appointment_schema(bind=legacy_engine)
    database.ensure_appointment_schema(bind=legacy_engine)

    columns = [column['name'] for column in inspect(legacy_engine).get_columns('appointments')]

    assert columns.count('rebooked_from_id') == 1


def test_create_tables_registers_every_model() -> None:
    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )

    database.create_tables(bind=engine)

    assert {'appointments', 'availability', 'clients', 'providers', 'provider_services', 'services'} <= set(
        inspect(engine).get_table_names()
    )
    engine.dispose()
