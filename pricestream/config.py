# pricestream/config.py
from dotenv import load_dotenv, find_dotenv
import os
import logging

from pricestream.errors import ConfigurationError

# Load nearest .env from project tree, don't override existing process env
load_dotenv(find_dotenv(usecwd=True), override=False)

logger = logging.getLogger(__name__)

VALID_WINDOWS = ("1h", "24h", "7d", "30d")


def _int_env(name: str, default: str) -> int:
    raw = (os.getenv(name) or default).strip()
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer", {"value": raw})


class Settings:
    """Price stream configuration, read once per instance from the environment."""

    def __init__(self):
        # Endpoints
        self.PRICE_WS_URL = (os.getenv("PRICE_WS_URL") or "ws://localhost:3000/ws/prices").strip()
        self.PRICE_API_URL = (os.getenv("PRICE_API_URL") or "http://localhost:3000").strip().rstrip("/")
        self.PRICE_API_TIMEOUT_MS = _int_env("PRICE_API_TIMEOUT_MS", "10000")

        # Reconnection / keepalive
        self.WS_MAX_RECONNECT_ATTEMPTS = _int_env("WS_MAX_RECONNECT_ATTEMPTS", "5")
        self.WS_RECONNECT_BASE_MS = _int_env("WS_RECONNECT_BASE_MS", "1000")
        self.WS_PING_INTERVAL_MS = _int_env("WS_PING_INTERVAL_MS", "30000")
        self.WS_PONG_TIMEOUT_MS = _int_env("WS_PONG_TIMEOUT_MS", "0")  # 0 = no pong deadline

        # Quote debounce
        self.QUOTE_DEBOUNCE_MS = _int_env("QUOTE_DEBOUNCE_MS", "500")

        # Chart series
        self.CHART_DEFAULT_WINDOW = (os.getenv("CHART_DEFAULT_WINDOW") or "24h").strip().lower()
        self.LIVE_BUFFER_MAX_POINTS = _int_env("LIVE_BUFFER_MAX_POINTS", "5000")

        # Logging
        self.LOG_LEVEL = (os.getenv("LOG_LEVEL") or "INFO").strip().upper()
        self.LOG_FILE = (os.getenv("LOG_FILE") or "").strip()

        self._validate()

    def _validate(self) -> None:
        if self.WS_MAX_RECONNECT_ATTEMPTS < 0:
            raise ConfigurationError("WS_MAX_RECONNECT_ATTEMPTS must be >= 0")
        if self.WS_RECONNECT_BASE_MS <= 0:
            raise ConfigurationError("WS_RECONNECT_BASE_MS must be > 0")
        if self.WS_PING_INTERVAL_MS <= 0:
            raise ConfigurationError("WS_PING_INTERVAL_MS must be > 0")
        if self.WS_PONG_TIMEOUT_MS < 0:
            raise ConfigurationError("WS_PONG_TIMEOUT_MS must be >= 0")
        if self.QUOTE_DEBOUNCE_MS < 0:
            raise ConfigurationError("QUOTE_DEBOUNCE_MS must be >= 0")
        if self.LIVE_BUFFER_MAX_POINTS <= 0:
            raise ConfigurationError("LIVE_BUFFER_MAX_POINTS must be > 0")
        if self.CHART_DEFAULT_WINDOW not in VALID_WINDOWS:
            raise ConfigurationError(
                f"CHART_DEFAULT_WINDOW must be one of {', '.join(VALID_WINDOWS)}",
                {"value": self.CHART_DEFAULT_WINDOW},
            )
        if not self.PRICE_WS_URL.startswith(("ws://", "wss://")):
            logger.warning(f"PRICE_WS_URL does not look like a websocket URL: {self.PRICE_WS_URL}")

    # Seconds-based views used by the services
    @property
    def reconnect_base_s(self) -> float:
        return self.WS_RECONNECT_BASE_MS / 1000.0

    @property
    def ping_interval_s(self) -> float:
        return self.WS_PING_INTERVAL_MS / 1000.0

    @property
    def pong_timeout_s(self):
        if self.WS_PONG_TIMEOUT_MS == 0:
            return None
        return self.WS_PONG_TIMEOUT_MS / 1000.0

    @property
    def quote_debounce_s(self) -> float:
        return self.QUOTE_DEBOUNCE_MS / 1000.0

    @property
    def api_timeout_s(self) -> float:
        return self.PRICE_API_TIMEOUT_MS / 1000.0


settings = Settings()
