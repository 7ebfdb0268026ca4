"""
Price feed WebSocket client.
Single socket for all instruments: reference-counted subscriptions, bounded
exponential backoff with full subscription replay, and keepalive pings.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import websockets
from pydantic import ValidationError

from pricestream.config import settings
from pricestream.errors import MessageParseError, PriceStreamError, RetriesExhaustedError, TransportError
from pricestream.observability import metrics
from pricestream.protocols import Connector, Transport
from pricestream.schemas.prices import OutboundMessage, StreamMessage
from pricestream.util.async_tools import TaskSupervisor
from pricestream.util.handlers import HandlerSet, Remove

logger = logging.getLogger("price_ws")

MessageHandler = Callable[[StreamMessage], None]
ErrorHandler = Callable[[PriceStreamError], None]
ConnectionHandler = Callable[[], None]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    BACKOFF = "backoff"


def default_connector(url: str) -> Awaitable[Transport]:
    # We send our own pings
    return websockets.connect(url, ping_interval=None, close_timeout=10)


class PriceWebSocket:
    """WebSocket client for the live price feed."""

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        max_reconnect_attempts: Optional[int] = None,
        reconnect_base_s: Optional[float] = None,
        ping_interval_s: Optional[float] = None,
        pong_timeout_s: Optional[float] = None,
        connector: Optional[Connector] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.url = url or settings.PRICE_WS_URL
        self.max_reconnect_attempts = (
            settings.WS_MAX_RECONNECT_ATTEMPTS if max_reconnect_attempts is None else max_reconnect_attempts
        )
        self.reconnect_base_s = reconnect_base_s or settings.reconnect_base_s
        self.ping_interval_s = ping_interval_s or settings.ping_interval_s
        self.pong_timeout_s = pong_timeout_s if pong_timeout_s is not None else settings.pong_timeout_s
        self._connector: Connector = connector or default_connector
        # Only used for the backoff wait between reconnect attempts
        self._sleep = sleep

        self.state = ConnectionState.DISCONNECTED
        self.ws: Optional[Transport] = None
        self._generation = 0

        # Backoff episode
        self.reconnect_attempts = 0
        self.reconnect_delay = self.reconnect_base_s

        # Desired state: instrument -> number of consumers
        self._subscriptions: Dict[str, int] = {}

        self._message_handlers: HandlerSet[MessageHandler] = HandlerSet("price_ws.message")
        self._error_handlers: HandlerSet[ErrorHandler] = HandlerSet("price_ws.error")
        self._open_handlers: HandlerSet[ConnectionHandler] = HandlerSet("price_ws.open")
        self._close_handlers: HandlerSet[ConnectionHandler] = HandlerSet("price_ws.close")

        self._tasks = TaskSupervisor("price_ws")

        # Health metrics
        self.total_reconnects = 0
        self.messages_received = 0
        self.parse_errors = 0
        self.pings_sent = 0
        self.pongs_received = 0
        self.last_message_ts = 0.0
        self._last_pong_at = 0.0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the feed. No-op while already open or connecting."""
        if self.state in (ConnectionState.OPEN, ConnectionState.CONNECTING):
            logger.debug(f"[price_ws] connect() ignored, state={self.state.value}")
            return

        if self.state == ConnectionState.DISCONNECTED:
            # Explicit connect starts a fresh backoff episode
            self.reconnect_attempts = 0
            self.reconnect_delay = self.reconnect_base_s

        self._tasks.cancel("reconnect")
        await self._open()

    async def disconnect(self) -> None:
        """Close the feed. The desired subscriptions are kept for the next connect()."""
        self._tasks.cancel("reconnect")
        if self.state == ConnectionState.DISCONNECTED and self.ws is None:
            return

        was_open = self.state == ConnectionState.OPEN
        self._generation += 1
        self._set_state(ConnectionState.CLOSING)
        self._tasks.cancel("keepalive")
        self._tasks.cancel("reader")

        ws, self.ws = self.ws, None
        if ws is not None:
            await self._close_transport(ws)

        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("[price_ws] Disconnected")
        if was_open:
            self._close_handlers.notify()

    async def shutdown(self) -> None:
        """Disconnect and drop every handler. Removal functions stay safe to call."""
        await self.disconnect()
        for registry in (self._message_handlers, self._error_handlers, self._open_handlers, self._close_handlers):
            registry.clear()
        await self._tasks.shutdown()
        logger.info("[price_ws] Shut down")

    async def _open(self) -> None:
        self._generation += 1
        generation = self._generation
        self._set_state(ConnectionState.CONNECTING)
        logger.info(f"[price_ws] Connecting to {self.url}")

        try:
            ws = await self._connector(self.url)
        except asyncio.CancelledError:
            if generation == self._generation:
                self._set_state(ConnectionState.DISCONNECTED)
            raise
        except Exception as e:
            if generation != self._generation:
                return
            logger.error(f"[price_ws] Connection failed: {e}")
            self._handle_drop(TransportError(f"Connection failed: {e}", {"url": self.url}))
            return

        if generation != self._generation or self.state != ConnectionState.CONNECTING:
            # disconnect() ran while we were opening
            await self._close_transport(ws)
            return

        self.ws = ws
        self.reconnect_attempts = 0
        self.reconnect_delay = self.reconnect_base_s
        self._last_pong_at = asyncio.get_running_loop().time()
        self._set_state(ConnectionState.OPEN)
        logger.info("[price_ws] Connected")

        await self._replay_subscriptions()
        if generation != self._generation or self.ws is not ws:
            # disconnect() ran during replay
            return

        self._tasks.spawn(self._keepalive_loop(ws), name="keepalive")
        self._tasks.spawn(self._reader_loop(ws), name="reader")
        self._open_handlers.notify()

    async def _replay_subscriptions(self) -> None:
        """Re-issue one subscribe per instrument in the desired set."""
        asset_ids = list(self._subscriptions)
        for asset_id in asset_ids:
            await self._send(OutboundMessage(type="subscribe", asset_id=asset_id))
        if asset_ids:
            logger.info(f"[price_ws] Replayed {len(asset_ids)} subscriptions")

    def _handle_drop(self, error: Optional[PriceStreamError]) -> None:
        """Transport closed or failed while open/connecting: back off or give up."""
        if self.state in (ConnectionState.CLOSING, ConnectionState.DISCONNECTED):
            return

        self._tasks.cancel("keepalive")
        self.ws = None

        if error is not None:
            self._error_handlers.notify(error)
        self._close_handlers.notify()

        if self.reconnect_attempts >= self.max_reconnect_attempts:
            self._set_state(ConnectionState.DISCONNECTED)
            metrics.record_ws_retries_exhausted()
            logger.error(
                "[price_ws] Max reconnection attempts reached",
                extra={"evt": "ws_retries_exhausted", "attempts": self.reconnect_attempts},
            )
            self._error_handlers.notify(RetriesExhaustedError(self.reconnect_attempts, {"url": self.url}))
            return

        self.reconnect_attempts += 1
        delay = self._calculate_backoff(self.reconnect_attempts)
        self.reconnect_delay = delay
        self.total_reconnects += 1
        self._set_state(ConnectionState.BACKOFF)
        metrics.record_ws_reconnect(delay)
        logger.warning(
            f"[price_ws] Reconnecting in {delay:.2f}s "
            f"(attempt {self.reconnect_attempts}/{self.max_reconnect_attempts})",
            extra={"evt": "ws_reconnect", "delay_s": delay, "attempt": self.reconnect_attempts},
        )
        self._tasks.spawn(self._reconnect_after(delay), name="reconnect")

    def _calculate_backoff(self, attempt: int) -> float:
        return self.reconnect_base_s * 2 ** (attempt - 1)

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        if self.state != ConnectionState.BACKOFF:
            return
        await self._open()

    async def _close_transport(self, ws: Transport) -> None:
        try:
            await ws.close()
        except Exception as e:
            logger.debug(f"[price_ws] Error closing transport: {e}")

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def _reader_loop(self, ws: Transport) -> None:
        error: Optional[PriceStreamError] = None
        try:
            async for raw in ws:
                self._handle_raw(raw)
        except asyncio.CancelledError:
            raise
        except websockets.ConnectionClosedOK:
            pass
        except Exception as e:
            error = TransportError(f"Connection lost: {e}", {"url": self.url})

        if ws is self.ws:
            logger.info("[price_ws] Transport closed")
            self._handle_drop(error)

    def _handle_raw(self, raw: Any) -> None:
        self.messages_received += 1
        self.last_message_ts = time.time()

        try:
            if isinstance(raw, (bytes, bytearray)):
                raw = raw.decode("utf-8")
            message = StreamMessage.model_validate_json(raw)
        except (ValidationError, ValueError) as e:
            self.parse_errors += 1
            metrics.record_ws_parse_error()
            logger.error(f"[price_ws] Failed to parse message: {e}")
            self._error_handlers.notify(
                MessageParseError(f"Failed to parse message: {e}", {"raw": str(raw)[:200]})
            )
            return

        metrics.record_ws_message(message.type)
        if message.type == "pong":
            self.pongs_received += 1
            self._last_pong_at = asyncio.get_running_loop().time()
        elif message.type == "priceUpdate":
            logger.debug(f"[price_ws] Price update received: {len(message.data or [])} assets")
        elif message.type == "error":
            logger.warning(f"[price_ws] Server error: {message.message}")
        else:
            logger.debug(f"[price_ws] {message.type} {message.asset_id}")

        self._message_handlers.notify(message)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def _send(self, message: OutboundMessage) -> bool:
        if self.state != ConnectionState.OPEN or self.ws is None:
            logger.warning(f"[price_ws] Cannot send {message.type}, not connected")
            return False
        try:
            await self.ws.send(message.to_wire())
            return True
        except Exception as e:
            # the reader sees the close and drives reconnection
            logger.warning(f"[price_ws] Send {message.type} failed: {e}")
            return False

    async def _keepalive_loop(self, ws: Transport) -> None:
        loop = asyncio.get_running_loop()
        while self.ws is ws:
            await asyncio.sleep(self.ping_interval_s)
            if self.ws is not ws:
                return

            sent_at = loop.time()
            if await self._send(OutboundMessage(type="ping")):
                self.pings_sent += 1
                logger.debug(f"[price_ws] Ping sent (total: {self.pings_sent})")

            if self.pong_timeout_s is None:
                continue

            await asyncio.sleep(self.pong_timeout_s)
            if self.ws is ws and self._last_pong_at < sent_at:
                logger.warning(f"[price_ws] No pong within {self.pong_timeout_s}s, dropping connection")
                await self._close_transport(ws)
                return

    async def subscribe(self, asset_id: str) -> None:
        """Add one consumer's interest in asset_id."""
        count = self._subscriptions.get(asset_id, 0)
        self._subscriptions[asset_id] = count + 1
        if count > 0:
            return

        logger.info(f"[price_ws] Subscribed to asset: {asset_id}")
        if self.state == ConnectionState.OPEN:
            await self._send(OutboundMessage(type="subscribe", asset_id=asset_id))

    async def unsubscribe(self, asset_id: str) -> None:
        """Drop one consumer's interest; the last one out sends the unsubscribe."""
        count = self._subscriptions.get(asset_id, 0)
        if count == 0:
            logger.debug(f"[price_ws] Unsubscribe for {asset_id} ignored, not subscribed")
            return
        if count > 1:
            self._subscriptions[asset_id] = count - 1
            return

        del self._subscriptions[asset_id]
        logger.info(f"[price_ws] Unsubscribed from asset: {asset_id}")
        if self.state == ConnectionState.OPEN:
            await self._send(OutboundMessage(type="unsubscribe", asset_id=asset_id))

    # ------------------------------------------------------------------
    # Handler registration
    # ------------------------------------------------------------------

    def on_message(self, handler: MessageHandler) -> Remove:
        return self._message_handlers.add(handler)

    def on_error(self, handler: ErrorHandler) -> Remove:
        return self._error_handlers.add(handler)

    def on_open(self, handler: ConnectionHandler) -> Remove:
        return self._open_handlers.add(handler)

    def on_close(self, handler: ConnectionHandler) -> Remove:
        return self._close_handlers.add(handler)

    def _set_state(self, state: ConnectionState) -> None:
        if state == self.state:
            return
        logger.debug(f"[price_ws] {self.state.value} -> {state.value}")
        self.state = state
        metrics.record_ws_state(state.value)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.OPEN

    @property
    def subscriptions(self) -> Dict[str, int]:
        """Instrument -> consumer count for the desired subscription set."""
        return dict(self._subscriptions)

    def subscribed_assets(self) -> List[str]:
        return list(self._subscriptions)

    def last_message_s_ago(self) -> float:
        if self.last_message_ts == 0:
            return 999.0
        return time.time() - self.last_message_ts

    def get_health_metrics(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "connected": self.is_connected,
            "url": self.url,
            "reconnect_attempts": self.reconnect_attempts,
            "max_reconnect_attempts": self.max_reconnect_attempts,
            "reconnect_delay_s": self.reconnect_delay,
            "total_reconnects": self.total_reconnects,
            "messages_received": self.messages_received,
            "parse_errors": self.parse_errors,
            "pings_sent": self.pings_sent,
            "pongs_received": self.pongs_received,
            "last_message_s_ago": round(self.last_message_s_ago(), 1),
            "subscriptions": self.subscriptions,
        }
