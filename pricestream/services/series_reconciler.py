"""
Chart series reconciliation.

Merges the historical series fetched for an (instrument, window) selection
with live price updates from the feed into one strictly time-ordered series.
Live points buffered before the history arrives are kept and merged once it
does; only points newer than the last historical point enter the series.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Callable, Deque, List, Optional, Union

from pricestream.config import settings
from pricestream.errors import FetchError
from pricestream.observability import metrics
from pricestream.protocols import HistoryFetcher
from pricestream.schemas.prices import PricePoint, SeriesSnapshot, StreamMessage, TimeWindow
from pricestream.services.price_ws import PriceWebSocket
from pricestream.util.async_tools import TaskSupervisor
from pricestream.util.handlers import HandlerSet, Remove

logger = logging.getLogger("series_reconciler")

SeriesHandler = Callable[[List[PricePoint]], None]
LatestHandler = Callable[[Optional[PricePoint]], None]
FetchErrorHandler = Callable[[FetchError], None]


def strictly_increasing(points: List[PricePoint]) -> List[PricePoint]:
    """Drop points whose time does not advance past the previous kept point."""
    result: List[PricePoint] = []
    for point in points:
        if result and point.time <= result[-1].time:
            continue
        result.append(point)
    return result


class SeriesReconciler:
    """Live-updating price series for one selected instrument and window."""

    def __init__(
        self,
        manager: PriceWebSocket,
        fetch_history: HistoryFetcher,
        *,
        default_window: Union[TimeWindow, str, None] = None,
        max_live_points: Optional[int] = None,
    ):
        self._manager = manager
        self._fetch_history = fetch_history
        self.default_window = TimeWindow(default_window or settings.CHART_DEFAULT_WINDOW)

        self.asset_id: Optional[str] = None
        self.window: TimeWindow = self.default_window
        self._selection = 0

        # Historical segment; None until the fetch for this selection lands
        self._historical: Optional[List[PricePoint]] = None
        self._last_historical_time: Optional[int] = None
        self._live: Deque[PricePoint] = deque(maxlen=max_live_points or settings.LIVE_BUFFER_MAX_POINTS)
        self._series: List[PricePoint] = []
        self._last_stream_price: Optional[float] = None

        self.latest_point: Optional[PricePoint] = None
        self.is_loading = False
        self.error: Optional[FetchError] = None

        self._series_handlers: HandlerSet[SeriesHandler] = HandlerSet("series_reconciler.series")
        self._latest_handlers: HandlerSet[LatestHandler] = HandlerSet("series_reconciler.latest")
        self._error_handlers: HandlerSet[FetchErrorHandler] = HandlerSet("series_reconciler.error")

        self._tasks = TaskSupervisor("series_reconciler")
        self._remove_message_handler: Optional[Remove] = manager.on_message(self._on_message)
        self._closed = False

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    async def select(self, asset_id: str, window: Union[TimeWindow, str, None] = None) -> None:
        """
        Show `asset_id` over `window`.

        Without a window, the current one is kept for the same instrument and the
        default one is used for a new instrument. Re-selecting the active pair is a no-op.
        """
        if self._closed:
            raise RuntimeError("SeriesReconciler is closed")

        if window is not None:
            window = TimeWindow(window)
        elif asset_id == self.asset_id:
            window = self.window
        else:
            window = self.default_window

        if asset_id == self.asset_id and window == self.window:
            return

        previous_asset = self.asset_id
        self._selection += 1
        self.asset_id = asset_id
        self.window = window
        self._reset()
        self._start_fetch()
        logger.info(f"[series_reconciler] Selected {asset_id} over {window.value}")

        self._series_handlers.notify(self.series)
        self._latest_handlers.notify(None)

        if asset_id != previous_asset:
            await self._manager.subscribe(asset_id)
            if previous_asset is not None:
                await self._manager.unsubscribe(previous_asset)
            await self._manager.connect()

    async def set_window(self, window: Union[TimeWindow, str]) -> None:
        if self.asset_id is None:
            self.window = TimeWindow(window)
            return
        await self.select(self.asset_id, window)

    async def retry(self) -> None:
        """Re-fetch history for the current selection, keeping buffered live points."""
        if self.asset_id is None or self._tasks.is_running(self._fetch_slot):
            return
        logger.info(f"[series_reconciler] Retrying history for {self.asset_id} {self.window.value}")
        self._start_fetch()

    def _reset(self) -> None:
        self._historical = None
        self._last_historical_time = None
        self._live.clear()
        self._series = []
        self._last_stream_price = None
        self.latest_point = None
        self.error = None
        self.is_loading = False

    # ------------------------------------------------------------------
    # Historical segment
    # ------------------------------------------------------------------

    @property
    def _fetch_slot(self) -> str:
        # One slot per selection; superseded fetches finish and are discarded
        return f"fetch-{self._selection}"

    def _start_fetch(self) -> None:
        self.is_loading = True
        self.error = None
        self._tasks.spawn(self._load_history(self._selection, self.asset_id, self.window), name=self._fetch_slot)

    async def _load_history(self, selection: int, asset_id: str, window: TimeWindow) -> None:
        started = time.monotonic()
        try:
            points = await self._fetch_history(asset_id, window)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            duration_ms = (time.monotonic() - started) * 1000
            if selection != self._selection:
                metrics.record_stale_discard("history")
                logger.debug(f"[series_reconciler] Dropped failed fetch for old selection {asset_id}")
                return
            metrics.record_history_fetch(asset_id, False, duration_ms)
            error = e if isinstance(e, FetchError) else FetchError(
                f"History fetch failed: {e}", {"asset_id": asset_id, "window": window.value}
            )
            self.error = error
            self.is_loading = False
            logger.error(f"[series_reconciler] History fetch failed for {asset_id} {window.value}: {e}")
            self._error_handlers.notify(error)
            return

        if selection != self._selection:
            metrics.record_stale_discard("history")
            logger.debug(
                f"[series_reconciler] Discarded stale history for {asset_id} {window.value}",
                extra={"evt": "stale_result_discarded", "kind": "history"},
            )
            return

        metrics.record_history_fetch(asset_id, True, (time.monotonic() - started) * 1000)
        self._apply_history(list(points))

    def _apply_history(self, points: List[PricePoint]) -> None:
        historical = strictly_increasing(points)
        if len(historical) != len(points):
            logger.warning(
                f"[series_reconciler] Dropped {len(points) - len(historical)} out-of-order historical points"
            )

        self._historical = historical
        self._last_historical_time = historical[-1].time if historical else None
        self.is_loading = False
        self.error = None

        self._series = list(historical)
        for point in self._live:
            self._merge_point(point)

        logger.info(
            f"[series_reconciler] History loaded for {self.asset_id}: "
            f"{len(historical)} historical + {len(self._series) - len(historical)} live points"
        )
        self._series_handlers.notify(self.series)

    # ------------------------------------------------------------------
    # Live segment
    # ------------------------------------------------------------------

    def _on_message(self, message: StreamMessage) -> None:
        if self.asset_id is None:
            return
        update = message.update_for(self.asset_id)
        if update is None:
            return
        point = update.to_point()
        if point is None:
            return

        if self._last_stream_price is not None and point.price == self._last_stream_price:
            logger.debug(f"[series_reconciler] Unchanged price for {self.asset_id}, skipped")
            return

        self._last_stream_price = point.price
        self._live.append(point)
        self.latest_point = point
        self._latest_handlers.notify(point)

        if self._merge_point(point):
            self._series_handlers.notify(self.series)

    def _merge_point(self, point: PricePoint) -> bool:
        """Append a live point to the merged series if it extends it. Returns True on change."""
        if self._historical is None:
            return False

        threshold = self._last_historical_time
        if threshold is not None and point.time <= threshold:
            return False

        has_live_tail = len(self._series) > len(self._historical)
        if has_live_tail and point.time <= self._series[-1].time:
            if point.time == self._series[-1].time:
                # same tick reported twice: last value wins
                self._series[-1] = point
                return True
            return False

        self._series.append(point)
        return True

    # ------------------------------------------------------------------
    # Consumer surface
    # ------------------------------------------------------------------

    @property
    def series(self) -> List[PricePoint]:
        return list(self._series)

    @property
    def has_history(self) -> bool:
        return self._historical is not None

    @property
    def live_buffer(self) -> List[PricePoint]:
        return list(self._live)

    def on_series(self, handler: SeriesHandler) -> Remove:
        return self._series_handlers.add(handler)

    def on_latest(self, handler: LatestHandler) -> Remove:
        return self._latest_handlers.add(handler)

    def on_error(self, handler: FetchErrorHandler) -> Remove:
        return self._error_handlers.add(handler)

    async def wait_for_history(self) -> None:
        """Wait for the in-flight history fetch, if any."""
        task = self._tasks.get(self._fetch_slot)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def snapshot(self) -> SeriesSnapshot:
        if self.asset_id is None:
            raise RuntimeError("No instrument selected")
        return SeriesSnapshot(
            asset_id=self.asset_id,
            window=self.window,
            points=self.series,
            latest_point=self.latest_point,
            is_loading=self.is_loading,
            error=self.error.message if self.error else None,
        )

    async def close(self) -> None:
        """Stop following the instrument and release the subscription."""
        if self._closed:
            return
        self._closed = True
        self._selection += 1
        self._reset()
        await self._tasks.shutdown()

        if self._remove_message_handler is not None:
            self._remove_message_handler()
            self._remove_message_handler = None

        asset_id, self.asset_id = self.asset_id, None
        if asset_id is not None:
            await self._manager.unsubscribe(asset_id)

        self._series_handlers.clear()
        self._latest_handlers.clear()
        self._error_handlers.clear()
