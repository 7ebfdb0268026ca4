"""
Debounced quote requests.

Every input change puts the quote in a loading state and replaces the single
pending request. A request is sent only after the quiet period passes with no
further input, and its result is applied only if it is still the pending one.
"""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple

from pricestream.config import settings
from pricestream.errors import FetchError, InvalidInputError
from pricestream.observability import metrics
from pricestream.protocols import QuoteProvider
from pricestream.schemas.prices import QuoteResult, QuoteState
from pricestream.util.async_tools import TaskSupervisor
from pricestream.util.handlers import HandlerSet, Remove
from pricestream.util.units import parse_units, quote_decimals

logger = logging.getLogger("quote_coordinator")

QuoteHandler = Callable[[QuoteState], None]

# (asset_id, is_buy, amount in base units)
Signature = Tuple[str, bool, int]


@dataclass
class PendingQuote:
    seq: int
    signature: Signature
    in_flight: bool = False


class DebouncedQuoteCoordinator:
    """Latest quote for a rapidly changing (instrument, side, amount) input."""

    def __init__(
        self,
        provider: QuoteProvider,
        debounce_s: Optional[float] = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._provider = provider
        self.debounce_s = settings.quote_debounce_s if debounce_s is None else debounce_s
        self._sleep = sleep

        self.state = QuoteState.idle()
        self._pending: Optional[PendingQuote] = None
        self._seq = itertools.count(1)

        self._listeners: HandlerSet[QuoteHandler] = HandlerSet("quote_coordinator.state")
        self._tasks = TaskSupervisor("quote_coordinator")
        self._closed = False

    @staticmethod
    def signature_for(asset_id: Optional[str], is_buy: bool, amount: Optional[str]) -> Optional[Signature]:
        """Input signature, or None when the input cannot be quoted."""
        if not asset_id or amount is None:
            return None
        try:
            units = parse_units(amount, quote_decimals(is_buy))
        except InvalidInputError:
            return None
        if units <= 0:
            return None
        return (asset_id, is_buy, units)

    def set_input(self, asset_id: Optional[str], is_buy: bool, amount: Optional[str]) -> None:
        """Record a new input. Must be called from the running event loop."""
        if self._closed:
            raise RuntimeError("DebouncedQuoteCoordinator is closed")

        signature = self.signature_for(asset_id, is_buy, amount)
        self._tasks.cancel("debounce")

        if signature is None:
            self._pending = None
            logger.debug(f"[quote_coordinator] Input not quotable ({asset_id!r}, {amount!r}), idle")
            self._set_state(QuoteState.idle())
            return

        pending = PendingQuote(seq=next(self._seq), signature=signature)
        self._pending = pending
        self._set_state(QuoteState(is_loading=True))
        self._tasks.spawn(self._debounce(pending), name="debounce")

    async def _debounce(self, pending: PendingQuote) -> None:
        await self._sleep(self.debounce_s)
        if self._pending is not pending:
            return
        pending.in_flight = True
        # The request gets its own slot so later input does not abort it
        self._tasks.spawn(self._request(pending), name=f"request-{pending.seq}")

    async def _request(self, pending: PendingQuote) -> None:
        asset_id, is_buy, amount = pending.signature
        logger.debug(f"[quote_coordinator] Requesting quote #{pending.seq} {asset_id} {'buy' if is_buy else 'sell'} {amount}")
        started = time.monotonic()

        result: Optional[QuoteResult] = None
        error: Optional[FetchError] = None
        try:
            result = await self._provider(asset_id, is_buy, amount)
        except asyncio.CancelledError:
            raise
        except FetchError as e:
            error = e
        except Exception as e:
            error = FetchError(f"Quote failed: {e}", {"asset_id": asset_id})

        duration_ms = (time.monotonic() - started) * 1000
        metrics.record_quote_request(error is None, duration_ms)

        if self._pending is not pending:
            metrics.record_stale_discard("quote")
            logger.debug(
                f"[quote_coordinator] Discarded stale quote #{pending.seq}",
                extra={"evt": "stale_result_discarded", "kind": "quote"},
            )
            return

        self._pending = None
        if error is not None:
            logger.error(f"[quote_coordinator] Quote #{pending.seq} failed: {error.message}")
            self._set_state(QuoteState(error=error.message))
            return

        self._set_state(QuoteState.from_result(result))

    def _set_state(self, state: QuoteState) -> None:
        if state == self.state:
            return
        self.state = state
        self._listeners.notify(state)

    @property
    def is_pending(self) -> bool:
        return self._pending is not None

    def on_change(self, handler: QuoteHandler) -> Remove:
        return self._listeners.add(handler)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._pending = None
        await self._tasks.shutdown()
        self._listeners.clear()
