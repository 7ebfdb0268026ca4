"""
Live price for a single instrument, straight from the push feed.
"""

import logging
from typing import Callable, List, Optional

from pricestream.schemas.prices import PriceUpdate, StreamMessage
from pricestream.services.price_ws import PriceWebSocket
from pricestream.util.handlers import HandlerSet, Remove

logger = logging.getLogger("live_price")

PriceHandler = Callable[[PriceUpdate], None]


class LivePrice:
    """Tracks connection status and the latest full update for one instrument."""

    def __init__(self, manager: PriceWebSocket, asset_id: str):
        self._manager = manager
        self.asset_id = asset_id
        self.price: Optional[PriceUpdate] = None
        self.is_connected = manager.is_connected

        self._listeners: HandlerSet[PriceHandler] = HandlerSet(f"live_price.{asset_id}")
        self._removers: List[Remove] = []
        self._started = False
        self._closed = False

    async def start(self) -> None:
        """Register with the manager, subscribe and make sure the feed is connecting."""
        if self._started or self._closed:
            return
        self._started = True

        self._removers = [
            self._manager.on_open(self._on_open),
            self._manager.on_close(self._on_close),
            self._manager.on_message(self._on_message),
        ]
        await self._manager.subscribe(self.asset_id)
        await self._manager.connect()
        self.is_connected = self._manager.is_connected
        logger.info(f"[live_price] Following {self.asset_id}")

    def _on_open(self) -> None:
        self.is_connected = True

    def _on_close(self) -> None:
        self.is_connected = False

    def _on_message(self, message: StreamMessage) -> None:
        update = message.update_for(self.asset_id)
        if update is None:
            return
        self.price = update
        logger.debug(f"[live_price] {self.asset_id} -> {update.display_price}")
        self._listeners.notify(update)

    def on_change(self, handler: PriceHandler) -> Remove:
        return self._listeners.add(handler)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for remove in self._removers:
            remove()
        self._removers = []
        self._listeners.clear()
        if self._started:
            await self._manager.unsubscribe(self.asset_id)
        logger.info(f"[live_price] Stopped following {self.asset_id}")
