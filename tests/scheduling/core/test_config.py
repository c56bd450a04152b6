import pytest

from scheduling.core import config


def test_list_and_bool_helpers() -> None:
    assert config._get_list(' http://a.test , ,http://b.test ', []) == ['http://a.test', 'http://b.test']
    assert config._get_list(None, ['x']) == ['x']
    assert config._get_bool('Yes') is True
    assert config._get_bool(None, default=True) is True


def test_validate_runtime_config_accepts_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'APP_ENV', 'development')

    config.validate_runtime_config()


@pytest.mark.parametrize(
    ('name', 'value'),
    [
        ('BOOKING_MAX_ATTEMPTS', 0),
        ('APPOINTMENT_CODE_MAX_ATTEMPTS', 0),
        ('BOOKING_LOCK_TIMEOUT_MS', 0),
        ('DEFAULT_SLOT_DURATION_MINUTES', -30),
    ],
)
def test_validate_runtime_config_rejects_non_positive_settings(monkeypatch: pytest.MonkeyPatch, name, value) -> None:
    monkeypatch.setattr(config, name, value)

    with pytest.raises(RuntimeError):
        config.validate_runtime_config()


def test_production_requires_postgres(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'APP_ENV', 'production')
    monkeypatch.setattr(config, 'DATABASE_URL', 'sqlite:///./scheduling.db')

    with pytest.raises(RuntimeError):
        config.validate_runtime_config()
