"""
Settings tests.
"""

import pytest

from pricestream.config import Settings
from pricestream.errors import ConfigurationError


def test_defaults(monkeypatch):
    for name in ("WS_MAX_RECONNECT_ATTEMPTS", "WS_RECONNECT_BASE_MS", "WS_PING_INTERVAL_MS",
                 "WS_PONG_TIMEOUT_MS", "QUOTE_DEBOUNCE_MS", "CHART_DEFAULT_WINDOW"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings()

    assert settings.WS_MAX_RECONNECT_ATTEMPTS == 5
    assert settings.reconnect_base_s == 1.0
    assert settings.ping_interval_s == 30.0
    assert settings.pong_timeout_s is None
    assert settings.quote_debounce_s == 0.5
    assert settings.CHART_DEFAULT_WINDOW == "24h"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("PRICE_API_URL", "https://prices.example.com/")
    monkeypatch.setenv("WS_RECONNECT_BASE_MS", "250")
    monkeypatch.setenv("WS_PONG_TIMEOUT_MS", "5000")
    monkeypatch.setenv("CHART_DEFAULT_WINDOW", "7D")

    settings = Settings()

    assert settings.PRICE_API_URL == "https://prices.example.com"
    assert settings.reconnect_base_s == 0.25
    assert settings.pong_timeout_s == 5.0
    assert settings.CHART_DEFAULT_WINDOW == "7d"


@pytest.mark.parametrize("name,value", [
    ("WS_MAX_RECONNECT_ATTEMPTS", "many"),
    ("WS_MAX_RECONNECT_ATTEMPTS", "-1"),
    ("WS_RECONNECT_BASE_MS", "0"),
    ("WS_PING_INTERVAL_MS", "0"),
    ("QUOTE_DEBOUNCE_MS", "-10"),
    ("LIVE_BUFFER_MAX_POINTS", "0"),
    ("CHART_DEFAULT_WINDOW", "90d"),
])
def test_invalid_values_raise(monkeypatch, name, value):
    monkeypatch.setenv(name, value)

    with pytest.raises(ConfigurationError) as exc_info:
        Settings()
    assert exc_info.value.error_code == "CONFIG_ERROR"
