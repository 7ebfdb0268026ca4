"""
Price API client tests (httpx MockTransport, no network).
"""

import json

import httpx
import pytest

from pricestream.errors import APIError, FetchError
from pricestream.schemas.prices import PricePoint, TimeWindow
from pricestream.services.price_api import PriceApiClient

HISTORY = {
    "assetId": "gold",
    "range": "7d",
    "interval": 3600,
    "source": "oracle",
    "prices": [{"time": 1700000000, "price": 2650.5}, {"time": 1700003600, "price": 2651.25}],
}

LIVE = {
    "assetId": "gold",
    "symbol": "XAU",
    "name": "Gold",
    "displayPrice": "2650.50",
    "displayPriceRaw": "265050000000",
    "sources": {
        "pyth": {"price": "265050000000", "timestamp": 1700000000, "status": "ok"},
        "dia": {"price": "265040000000", "timestamp": 1699999990, "status": "stale"},
    },
    "median": "265050000000",
    "lastUpdated": 1700000000,
    "cacheStatus": "fresh",
}


def make_client(handler) -> PriceApiClient:
    http = httpx.AsyncClient(base_url="http://prices.test", transport=httpx.MockTransport(handler))
    return PriceApiClient("http://prices.test", client=http)


@pytest.mark.asyncio
class TestPriceApiClient:

    async def test_history_request_and_parse(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=HISTORY)

        api = make_client(handler)
        try:
            result = await api.get_price_history("gold", TimeWindow.D7)
        finally:
            await api.client.aclose()

        assert seen[0].url.path == "/prices/gold/history"
        assert seen[0].url.params["range"] == "7d"
        assert result == [PricePoint(time=1700000000, price=2650.5), PricePoint(time=1700003600, price=2651.25)]

    async def test_client_is_a_history_fetcher(self):
        api = make_client(lambda request: httpx.Response(200, json={**HISTORY, "range": "1h", "prices": []}))
        try:
            assert await api("gold", TimeWindow.H1) == []
        finally:
            await api.client.aclose()

    async def test_http_error_raises_api_error(self):
        api = make_client(lambda request: httpx.Response(404, json={"error": "Asset not found"}))
        try:
            with pytest.raises(APIError) as exc_info:
                await api.get_price_history("nope", "24h")
        finally:
            await api.client.aclose()

        assert exc_info.value.status_code == 404
        assert exc_info.value.data == {"error": "Asset not found"}
        assert isinstance(exc_info.value, FetchError)

    async def test_http_error_with_text_body(self):
        api = make_client(lambda request: httpx.Response(502, text="Bad Gateway"))
        try:
            with pytest.raises(APIError) as exc_info:
                await api.get_live_price("gold")
        finally:
            await api.client.aclose()

        assert exc_info.value.data == {"body": "Bad Gateway"}

    async def test_transport_error_raises_fetch_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        api = make_client(handler)
        try:
            with pytest.raises(FetchError) as exc_info:
                await api.get_price_history("gold", "24h")
        finally:
            await api.client.aclose()

        assert not isinstance(exc_info.value, APIError)
        assert exc_info.value.error_code == "FETCH_ERROR"

    async def test_malformed_history_raises_fetch_error(self):
        api = make_client(lambda request: httpx.Response(200, content=json.dumps({"prices": "nope"})))
        try:
            with pytest.raises(FetchError):
                await api.get_price_history("gold", "24h")
        finally:
            await api.client.aclose()

    async def test_live_price(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, json=LIVE)

        api = make_client(handler)
        try:
            update = await api.get_live_price("gold")
        finally:
            await api.client.aclose()

        assert seen == ["/prices/live/gold"]
        assert update.symbol == "XAU"
        assert update.price == pytest.approx(2650.5)
        assert update.sources["dia"].status == "stale"
        assert update.to_point() == PricePoint(time=1700000000, price=2650.5)

    async def test_owned_client_is_closed(self):
        api = PriceApiClient("http://prices.test", timeout=1.0)
        await api.aclose()

        assert api.client.is_closed
