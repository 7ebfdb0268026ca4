"""
Debounced quote coordinator tests.
Quiet-period collapsing, stale result discard and invalid input handling.
"""

import asyncio
from typing import List

import pytest

from pricestream.errors import FetchError
from pricestream.observability.metrics import get_registry
from pricestream.schemas.prices import QuoteResult, QuoteState
from pricestream.services.quote_coordinator import DebouncedQuoteCoordinator


class ManualClock:
    """Sleep implementation driven by advance() instead of wall time."""

    def __init__(self):
        self.now = 0.0
        self._sleepers = []

    async def sleep(self, delay: float) -> None:
        future = asyncio.get_running_loop().create_future()
        self._sleepers.append((self.now + delay, future))
        await future

    async def advance(self, seconds: float) -> None:
        await _spin()
        self.now += seconds
        due = [s for s in self._sleepers if s[0] <= self.now + 1e-9]
        for sleeper in due:
            self._sleepers.remove(sleeper)
            if not sleeper[1].done():
                sleeper[1].set_result(None)
        await _spin()


class ScriptedQuotes:
    """Quote provider whose calls stay pending until the test settles them."""

    def __init__(self):
        self.calls = []
        self._futures: List[asyncio.Future] = []

    async def __call__(self, asset_id, is_buy, amount):
        future = asyncio.get_running_loop().create_future()
        self.calls.append((asset_id, is_buy, amount))
        self._futures.append(future)
        return await future

    async def resolve(self, index, result):
        self._futures[index].set_result(result)
        await _spin()

    async def fail(self, index, exc):
        self._futures[index].set_exception(exc)
        await _spin()


async def _spin(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def quote(output_amount: int) -> QuoteResult:
    return QuoteResult(output_amount=output_amount, effective_price=2650_000000, spread_bps=25, fee=1000)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def provider():
    return ScriptedQuotes()


@pytest.fixture
async def coordinator(provider, clock):
    coord = DebouncedQuoteCoordinator(provider, 0.5, sleep=clock.sleep)
    yield coord
    await coord.close()


@pytest.mark.asyncio
class TestDebounce:

    async def test_rapid_changes_collapse_into_one_request(self, coordinator, provider, clock):
        coordinator.set_input("gold", True, "1")
        await clock.advance(0.1)
        coordinator.set_input("gold", True, "10")
        await clock.advance(0.1)
        coordinator.set_input("gold", True, "100")
        await clock.advance(0.4)

        assert provider.calls == []

        await clock.advance(0.1)

        assert provider.calls == [("gold", True, 100_000_000)]

    async def test_only_latest_input_result_is_applied(self, coordinator, provider, clock):
        coordinator.set_input("gold", True, "1")      # t=0, never sent
        await clock.advance(0.1)
        coordinator.set_input("gold", True, "2")      # t=100ms, sent at 600ms
        await clock.advance(0.5)
        await clock.advance(0.1)
        coordinator.set_input("gold", True, "3")      # t=700ms, sent at 1200ms
        await clock.advance(0.5)

        assert provider.calls == [("gold", True, 2_000_000), ("gold", True, 3_000_000)]

        await provider.resolve(1, quote(3))
        assert coordinator.state == QuoteState.from_result(quote(3))

        await provider.resolve(0, quote(2))
        assert coordinator.state.output_amount == 3
        assert get_registry().get_counter("stale_discards", {"kind": "quote"}) == 1

    async def test_stale_failure_is_discarded(self, coordinator, provider, clock):
        coordinator.set_input("gold", False, "1")
        await clock.advance(0.5)
        coordinator.set_input("gold", False, "2")

        await provider.fail(0, RuntimeError("quote service down"))

        assert coordinator.state.is_loading
        assert coordinator.state.error is None

    async def test_in_flight_request_is_not_aborted_by_new_input(self, coordinator, provider, clock):
        coordinator.set_input("gold", True, "1")
        await clock.advance(0.5)
        coordinator.set_input("gold", True, "2")
        await _spin()

        await provider.resolve(0, quote(1))

        assert provider._futures[0].done() and not provider._futures[0].cancelled()
        assert coordinator.state.is_loading


@pytest.mark.asyncio
class TestState:

    async def test_new_input_clears_previous_result_and_error(self, coordinator, provider, clock):
        coordinator.set_input("gold", True, "1")
        await clock.advance(0.5)
        await provider.fail(0, FetchError("upstream 503"))
        assert coordinator.state.error == "upstream 503"
        assert not coordinator.state.is_loading

        coordinator.set_input("gold", True, "2")

        assert coordinator.state == QuoteState(is_loading=True)

    async def test_success_applies_result(self, coordinator, provider, clock):
        states = []
        coordinator.on_change(states.append)

        coordinator.set_input("gold", True, "1.5")
        await clock.advance(0.5)
        await provider.resolve(0, quote(42))

        assert states[0].is_loading
        assert states[-1] == QuoteState(output_amount=42, effective_price=2650_000000, spread_bps=25, fee=1000)
        assert not coordinator.is_pending

    async def test_provider_exception_is_wrapped(self, coordinator, provider, clock):
        coordinator.set_input("gold", True, "1")
        await clock.advance(0.5)
        await provider.fail(0, ConnectionError("reset"))

        assert coordinator.state.error.startswith("Quote failed")
        assert get_registry().get_counter("quote_requests", {"status": "error"}) == 1

    @pytest.mark.parametrize("asset_id,amount", [
        ("gold", ""),
        ("gold", "   "),
        ("gold", "0"),
        ("gold", "-5"),
        ("gold", "abc"),
        ("gold", None),
        (None, "1"),
        ("gold", "0.0000001"),  # below 6-decimal resolution on the buy side
    ])
    async def test_invalid_input_goes_idle_without_request(self, coordinator, provider, clock, asset_id, amount):
        coordinator.set_input(asset_id, True, amount)
        await clock.advance(1.0)

        assert coordinator.state == QuoteState.idle()
        assert provider.calls == []

    async def test_out_of_range_sell_amount_goes_idle(self, coordinator, provider, clock):
        # 1e50 tokens at 18 decimals overflows the decimal context
        coordinator.set_input("gold", False, "1e50")
        await clock.advance(1.0)

        assert coordinator.state == QuoteState.idle()
        assert provider.calls == []

    async def test_invalid_input_cancels_pending_request(self, coordinator, provider, clock):
        coordinator.set_input("gold", True, "5")
        await clock.advance(0.2)
        coordinator.set_input("gold", True, "")
        await clock.advance(1.0)

        assert provider.calls == []
        assert coordinator.state == QuoteState.idle()
        assert not coordinator.is_pending

    async def test_sell_side_uses_token_decimals(self, coordinator, provider, clock):
        coordinator.set_input("gold", False, "2")
        await clock.advance(0.5)

        assert provider.calls == [("gold", False, 2 * 10 ** 18)]

    async def test_close_drops_pending_work(self, provider, clock):
        coord = DebouncedQuoteCoordinator(provider, 0.5, sleep=clock.sleep)
        coord.set_input("gold", True, "1")

        await coord.close()
        await clock.advance(1.0)

        assert provider.calls == []
        with pytest.raises(RuntimeError):
            coord.set_input("gold", True, "1")
