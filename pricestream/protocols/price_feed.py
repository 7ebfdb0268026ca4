"""
Collaborator protocols for the price stream.
Boundaries to the transport, the historical series source and the quoting source.
"""

from typing import AsyncIterator, Awaitable, Callable, List, Protocol
from abc import abstractmethod

from pricestream.schemas.prices import PricePoint, QuoteResult, TimeWindow


class Transport(Protocol):
    """One bidirectional message channel (a connected websocket)."""

    @abstractmethod
    async def send(self, message: str) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[str]:
        ...


# Opens a transport for a URL; websockets.connect satisfies this.
Connector = Callable[[str], Awaitable[Transport]]


class HistoryFetcher(Protocol):
    """Fetches the historical series for an instrument and window."""

    @abstractmethod
    async def __call__(self, asset_id: str, window: TimeWindow) -> List[PricePoint]:
        ...


class QuoteProvider(Protocol):
    """Returns a quote for trading `amount` base units of an instrument."""

    @abstractmethod
    async def __call__(self, asset_id: str, is_buy: bool, amount: int) -> QuoteResult:
        ...
