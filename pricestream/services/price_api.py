"""
HTTP client for the price API.
Historical series for the chart and one-shot live prices.
"""

import logging
from typing import List, Optional, Union

import httpx
from pydantic import ValidationError

from pricestream.config import settings
from pricestream.errors import APIError, FetchError
from pricestream.schemas.prices import PriceHistoryResponse, PricePoint, PriceUpdate, TimeWindow

logger = logging.getLogger("price_api")


class PriceApiClient:
    """
    Async client for the price API.

    Instances are callable with (asset_id, window) so they can be handed to
    SeriesReconciler as its history fetcher.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.PRICE_API_URL).rstrip("/")
        self.timeout = settings.api_timeout_s if timeout is None else timeout
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)

    async def __call__(self, asset_id: str, window: TimeWindow) -> List[PricePoint]:
        return await self.get_price_history(asset_id, window)

    async def _get(self, path: str, params: Optional[dict] = None) -> httpx.Response:
        try:
            response = await self.client.get(path, params=params)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            try:
                data = e.response.json()
            except ValueError:
                data = {"body": e.response.text[:200]}
            if not isinstance(data, dict):
                data = {"body": data}
            logger.error(f"[price_api] GET {path} -> HTTP {status_code}")
            raise APIError(f"Price API returned {status_code}", status_code, data)
        except httpx.HTTPError as e:
            logger.error(f"[price_api] GET {path} failed: {e}")
            raise FetchError(f"Price API request failed: {e}", {"path": path})

    async def get_price_history(self, asset_id: str, window: Union[TimeWindow, str]) -> List[PricePoint]:
        """Historical points for asset_id over window, oldest first."""
        window = TimeWindow(window)
        response = await self._get(f"/prices/{asset_id}/history", params={"range": window.value})
        try:
            history = PriceHistoryResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise FetchError(f"Invalid history response: {e}", {"asset_id": asset_id})

        logger.debug(f"[price_api] {len(history.prices)} history points for {asset_id} {window.value}")
        return history.prices

    async def get_live_price(self, asset_id: str) -> PriceUpdate:
        """Current aggregated price for asset_id."""
        response = await self._get(f"/prices/live/{asset_id}")
        try:
            return PriceUpdate.model_validate_json(response.content)
        except ValidationError as e:
            raise FetchError(f"Invalid live price response: {e}", {"asset_id": asset_id})

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
