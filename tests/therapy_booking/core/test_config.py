import pytest

from therapy_booking.core import config


def test_validate_runtime_config_accepts_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'APP_ENV', 'development')
    monkeypatch.setattr(config, 'SLOT_INCREMENT_MINUTES', 30)
    monkeypatch.setattr(config, 'MAX_SLOT_SEARCH_DAYS', 62)
    monkeypatch.setattr(config, 'SLOT_SEARCH_BUDGET_SECONDS', None)

    config.validate_runtime_config()


@pytest.mark.parametrize(
    ('name', 'value'),
    [
        ('SLOT_INCREMENT_MINUTES', 0),
        ('MAX_SLOT_SEARCH_DAYS', 0),
        ('SLOT_SEARCH_BUDGET_SECONDS', -1.0),
    ],
)
def test_validate_runtime_config_rejects_non_positive_limits(monkeypatch: pytest.MonkeyPatch, name: str, value) -> None:
    monkeypatch.setattr(config, 'APP_ENV', 'development')
    monkeypatch.setattr(config, name, value)

    with pytest.raises(RuntimeError):
        config.validate_runtime_config()


def test_validate_runtime_config_rejects_sqlite_in_production(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'APP_ENV', 'production')
    monkeypatch.setattr(config, 'DATABASE_URL', 'sqlite:///./booking.db')

    with pytest.raises(RuntimeError):
        config.validate_runtime_config()


@pytest.mark.parametrize(
    ('raw', 'expected'),
    [(None, False), ('true', True), (' YES ', True), ('0', False), ('off', False)],
)
def test_get_bool_parses_flags(raw, expected: bool) -> None:
    assert config._get_bool(raw) is expected


def test_get_int_falls_back_on_blank_values() -> None:
    assert config._get_int('  ', 30) == 30
    assert config._get_int('15', 30) == 15
