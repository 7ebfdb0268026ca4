"""
Pytest configuration for the price stream tests.
Scripted websocket transports, a fake connector and a recording backoff sleep.
"""

import asyncio
import json
from typing import Any, Callable, List, Optional, Union

import pytest

from pricestream.observability.metrics import get_registry
from pricestream.schemas.prices import PricePoint

_CLOSED = object()


class FakeTransport:
    """In-memory websocket: tests feed inbound frames and inspect what was sent."""

    def __init__(self):
        self.sent: List[str] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionError("transport closed")
        self.sent.append(message)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(_CLOSED)

    def feed(self, payload: Union[str, bytes, dict]) -> None:
        if isinstance(payload, dict):
            payload = json.dumps(payload)
        self._inbox.put_nowait(payload)

    def drop(self, exc: Optional[BaseException] = None) -> None:
        """Simulate the connection failing underneath the reader."""
        self._inbox.put_nowait(exc or ConnectionResetError("connection reset by peer"))

    def server_close(self) -> None:
        """Simulate a clean close initiated by the server."""
        self._inbox.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._inbox.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            self.closed = True
            raise item
        return item

    def sent_json(self) -> List[dict]:
        return [json.loads(m) for m in self.sent]

    def sent_of_type(self, msg_type: str) -> List[dict]:
        return [m for m in self.sent_json() if m["type"] == msg_type]


class GatedTransport(FakeTransport):
    """Transport whose sends block until the test sets `release`."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()
        self.waiting = False

    async def send(self, message: str) -> None:
        self.waiting = True
        await self.release.wait()
        await super().send(message)


class FakeConnector:
    """Connector that hands out FakeTransports, optionally failing first."""

    def __init__(self):
        self.transports: List[FakeTransport] = []
        self.calls = 0
        self.failures = 0
        self.always_fail = False

    async def __call__(self, url: str) -> FakeTransport:
        self.calls += 1
        if self.always_fail:
            raise OSError("connection refused")
        if self.failures > 0:
            self.failures -= 1
            raise OSError("connection refused")
        transport = FakeTransport()
        self.transports.append(transport)
        return transport

    @property
    def latest(self) -> FakeTransport:
        return self.transports[-1]


class RecordingSleep:
    """Backoff sleep that records each requested delay and returns at once."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def price_update(asset_id: str, raw: int, last_updated: int, **extra: Any) -> dict:
    """Wire-format priceUpdate envelope for a single asset."""
    update = {
        "assetId": asset_id,
        "symbol": asset_id.upper(),
        "name": asset_id.title(),
        "displayPrice": f"{raw / 1e8:.2f}",
        "displayPriceRaw": str(raw),
        "sources": {},
        "median": str(raw),
        "lastUpdated": last_updated,
        "cacheStatus": "fresh",
    }
    update.update(extra)
    return {"type": "priceUpdate", "data": [update], "timestamp": last_updated * 1000}


def points(*pairs) -> List[PricePoint]:
    return [PricePoint(time=t, price=p) for t, p in pairs]


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def backoff_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def settle() -> Callable:
    """Run the loop until predicate() holds or the round budget is spent."""

    async def _settle(predicate: Callable[[], bool], rounds: int = 500) -> bool:
        for _ in range(rounds):
            if predicate():
                return True
            await asyncio.sleep(0)
        return predicate()

    return _settle


@pytest.fixture(autouse=True)
def reset_metrics():
    get_registry().reset()
    yield
    get_registry().reset()


# Pytest configuration
def pytest_configure(config):
    config.addinivalue_line("markers", "deterministic: marks tests as deterministic")
