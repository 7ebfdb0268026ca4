"""
Price Feed Session - owns one feed connection and the consumers built on it.
Created and shut down by the composition root; several sessions may coexist.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from pricestream.config import Settings, settings as default_settings
from pricestream.protocols import Connector, HistoryFetcher, QuoteProvider
from pricestream.services.live_price import LivePrice
from pricestream.services.price_api import PriceApiClient
from pricestream.services.price_ws import PriceWebSocket
from pricestream.services.quote_coordinator import DebouncedQuoteCoordinator
from pricestream.services.series_reconciler import SeriesReconciler

logger = logging.getLogger("price_feed_manager")

Consumer = Union[SeriesReconciler, LivePrice, DebouncedQuoteCoordinator]


class PriceFeedSession:
    """One logical price feed connection shared by every consumer of a session."""

    def __init__(
        self,
        manager: PriceWebSocket,
        history_fetcher: HistoryFetcher,
        settings: Settings,
        api: Optional[PriceApiClient] = None,
    ):
        self.manager = manager
        self.history_fetcher = history_fetcher
        self.settings = settings
        self.api = api
        self._consumers: List[Consumer] = []
        self.closed = False

    @classmethod
    def create(
        cls,
        settings: Optional[Settings] = None,
        connector: Optional[Connector] = None,
        history_fetcher: Optional[HistoryFetcher] = None,
    ) -> "PriceFeedSession":
        settings = settings or default_settings
        manager = PriceWebSocket(
            settings.PRICE_WS_URL,
            max_reconnect_attempts=settings.WS_MAX_RECONNECT_ATTEMPTS,
            reconnect_base_s=settings.reconnect_base_s,
            ping_interval_s=settings.ping_interval_s,
            pong_timeout_s=settings.pong_timeout_s,
            connector=connector,
        )
        api = PriceApiClient(settings.PRICE_API_URL, settings.api_timeout_s)
        session = cls(manager, history_fetcher or api, settings, api)
        logger.info(f"[price_feed_manager] Session created for {settings.PRICE_WS_URL}")
        return session

    def _track(self, consumer: Consumer) -> Consumer:
        if self.closed:
            raise RuntimeError("PriceFeedSession is shut down")
        self._consumers.append(consumer)
        return consumer

    def series(self) -> SeriesReconciler:
        return self._track(SeriesReconciler(
            self.manager,
            self.history_fetcher,
            default_window=self.settings.CHART_DEFAULT_WINDOW,
            max_live_points=self.settings.LIVE_BUFFER_MAX_POINTS,
        ))

    def live_price(self, asset_id: str) -> LivePrice:
        return self._track(LivePrice(self.manager, asset_id))

    def quote_coordinator(self, provider: QuoteProvider) -> DebouncedQuoteCoordinator:
        return self._track(DebouncedQuoteCoordinator(provider, self.settings.quote_debounce_s))

    async def connect(self) -> None:
        await self.manager.connect()

    async def disconnect(self) -> None:
        await self.manager.disconnect()

    def get_status(self) -> Dict[str, Any]:
        status = self.manager.get_health_metrics()
        status["consumers"] = len(self._consumers)
        return status

    async def shutdown(self) -> None:
        """Close every consumer, the transport and the HTTP client."""
        if self.closed:
            return
        self.closed = True
        logger.info(f"[price_feed_manager] Shutting down {len(self._consumers)} consumers")

        consumers, self._consumers = self._consumers, []
        for consumer in consumers:
            try:
                await consumer.close()
            except Exception as e:
                logger.error(f"[price_feed_manager] Error closing {type(consumer).__name__}: {e}")

        await self.manager.shutdown()
        if self.api is not None:
            await self.api.aclose()
        logger.info("[price_feed_manager] Shut down")
