from pathlib import Path

import pytest

from whatsapp_api.config import load_settings


def test_defaults():
    settings = load_settings({})

    assert settings.sessions_dir == Path("./sessions")
    assert settings.api_key is None
    assert settings.allowed_origins == ["*"]
    assert settings.recovery_delay == 5.0
    assert settings.min_number_digits is None
    assert settings.max_sessions is None
    assert settings.headless is True
    assert settings.port == 8080


def test_values_from_environment():
    settings = load_settings({
        "WHATSAPP_SESSIONS_DIR": "/data/wa",
        "WHATSAPP_API_KEY": " key ",
        "ALLOWED_ORIGINS": "https://a.example, https://b.example",
        "WHATSAPP_RECOVERY_DELAY": "2.5",
        "WHATSAPP_MIN_NUMBER_DIGITS": "10",
        "WHATSAPP_MAX_SESSIONS": "50",
        "WHATSAPP_HEADLESS": "false",
        "WHATSAPP_RESTORE_SESSIONS": "yes",
        "PORT": "9000",
        "LOG_LEVEL": "debug",
    })

    assert settings.sessions_dir == Path("/data/wa")
    assert settings.api_key == "key"
    assert settings.allowed_origins == ["https://a.example", "https://b.example"]
    assert settings.recovery_delay == 2.5
    assert settings.min_number_digits == 10
    assert settings.max_sessions == 50
    assert settings.headless is False
    assert settings.restore_sessions is True
    assert settings.port == 9000
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize("value", ["off", "OFF", "", "none"])
def test_min_digits_can_be_disabled(value):
    assert load_settings({"WHATSAPP_MIN_NUMBER_DIGITS": value}).min_number_digits is None


@pytest.mark.parametrize("env", [
    {"WHATSAPP_MIN_NUMBER_DIGITS": "ten"},
    {"WHATSAPP_MAX_SESSIONS": "-1"},
    {"WHATSAPP_RECOVERY_DELAY": "-5"},
    {"PORT": "http"},
])
def test_invalid_values_raise(env):
    with pytest.raises(ValueError):
        load_settings(env)
