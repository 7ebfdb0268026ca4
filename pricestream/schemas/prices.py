"""
Price stream schemas using Pydantic for validation and serialization.
"""

from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# displayPriceRaw carries 8 implied decimals
PRICE_DECIMALS = 8


class TimeWindow(str, Enum):
    """Look-back window for historical chart data."""
    H1 = "1h"
    H24 = "24h"
    D7 = "7d"
    D30 = "30d"

    @property
    def seconds(self) -> int:
        return WINDOW_SECONDS[self]


WINDOW_SECONDS: Dict[TimeWindow, int] = {
    TimeWindow.H1: 3600,
    TimeWindow.H24: 86400,
    TimeWindow.D7: 604800,
    TimeWindow.D30: 2592000,
}


class PricePoint(BaseModel):
    """One (timestamp, price) observation. Ordering key is time."""
    model_config = ConfigDict(frozen=True)

    time: int       # unix seconds
    price: float


class SourcePrice(BaseModel):
    """Single oracle source reading inside a live update."""
    price: str
    timestamp: int
    status: Literal["ok", "stale", "error"]


class PriceUpdate(BaseModel):
    """Live price for one asset as pushed by the feed."""
    model_config = ConfigDict(populate_by_name=True)

    asset_id: str = Field(alias="assetId")
    symbol: str = ""
    name: str = ""
    display_price: str = Field(default="0", alias="displayPrice")
    display_price_raw: str = Field(default="0", alias="displayPriceRaw")
    sources: Dict[str, SourcePrice] = Field(default_factory=dict)
    median: str = "0"
    last_updated: int = Field(default=0, alias="lastUpdated")   # unix seconds, 0 = no data yet
    cache_status: Literal["fresh", "stale"] = Field(default="fresh", alias="cacheStatus")

    @property
    def price(self) -> float:
        return int(self.display_price_raw) / 10 ** PRICE_DECIMALS

    def to_point(self) -> Optional[PricePoint]:
        """Chart point for this update, or None when the feed has no reading yet."""
        if self.last_updated <= 0:
            return None
        return PricePoint(time=self.last_updated, price=self.price)


InboundType = Literal["priceUpdate", "subscribed", "unsubscribed", "pong", "error"]
OutboundType = Literal["subscribe", "unsubscribe", "ping"]


class StreamMessage(BaseModel):
    """Inbound envelope from the price feed."""
    model_config = ConfigDict(populate_by_name=True)

    type: InboundType
    data: Optional[List[PriceUpdate]] = None
    asset_id: Optional[str] = Field(default=None, alias="assetId")
    message: Optional[str] = None
    timestamp: int

    def update_for(self, asset_id: str) -> Optional[PriceUpdate]:
        """The update for asset_id carried by this message, if any."""
        if self.type != "priceUpdate" or not self.data:
            return None
        for update in self.data:
            if update.asset_id == asset_id:
                return update
        return None


class OutboundMessage(BaseModel):
    """Client → server envelope."""
    model_config = ConfigDict(populate_by_name=True)

    type: OutboundType
    asset_id: Optional[str] = Field(default=None, alias="assetId")

    def to_wire(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class PriceHistoryResponse(BaseModel):
    """Response of GET /prices/{assetId}/history."""
    model_config = ConfigDict(populate_by_name=True)

    asset_id: str = Field(alias="assetId")
    range: str
    interval: Optional[int] = None
    source: Optional[str] = None
    prices: List[PricePoint] = Field(default_factory=list)


class QuoteResult(BaseModel):
    """Quote returned by the quoting collaborator (integer base units)."""
    output_amount: int
    effective_price: int
    spread_bps: int
    fee: int


class QuoteState(BaseModel):
    """Observable quote state shown to the consumer."""
    output_amount: int = 0
    effective_price: int = 0
    spread_bps: int = 0
    fee: int = 0
    is_loading: bool = False
    error: Optional[str] = None

    @classmethod
    def idle(cls) -> "QuoteState":
        return cls()

    @classmethod
    def from_result(cls, result: QuoteResult) -> "QuoteState":
        return cls(
            output_amount=result.output_amount,
            effective_price=result.effective_price,
            spread_bps=result.spread_bps,
            fee=result.fee,
        )


class SeriesSnapshot(BaseModel):
    """Reconciled series for one (instrument, window) selection."""
    asset_id: str
    window: TimeWindow
    points: List[PricePoint]
    latest_point: Optional[PricePoint] = None
    is_loading: bool = False
    error: Optional[str] = None
