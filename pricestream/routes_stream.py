"""
Price stream control endpoints for ops/dev use.
Connection status, manual connect/disconnect and one-shot series snapshots.
"""

from fastapi import APIRouter, Request
from typing import Any, Dict, Optional
import logging

from pricestream.errors import TransportError
from pricestream.schemas.prices import SeriesSnapshot, TimeWindow
from pricestream.services.price_feed_manager import PriceFeedSession
from pricestream.services.series_reconciler import SeriesReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stream", tags=["stream"])


def _session(request: Request) -> PriceFeedSession:
    session = getattr(request.app.state, "session", None)
    if session is None or session.closed:
        raise TransportError("Price feed session is not running")
    return session


@router.get("/status")
async def stream_status(request: Request) -> Dict[str, Any]:
    """Connection health metrics for the session's feed."""
    return _session(request).get_status()


@router.post("/connect")
async def stream_connect(request: Request) -> Dict[str, Any]:
    """
    Connect the feed. From a disconnected state this also starts a fresh
    reconnect budget, which is how a feed that gave up is resumed.
    """
    session = _session(request)
    await session.connect()
    logger.info("Price feed connect requested via /stream/connect")
    return {"success": True, "state": session.manager.state.value}


@router.post("/disconnect")
async def stream_disconnect(request: Request) -> Dict[str, Any]:
    session = _session(request)
    await session.disconnect()
    logger.info("Price feed disconnected via /stream/disconnect")
    return {"success": True, "state": session.manager.state.value}


@router.get("/series/{asset_id}", response_model=SeriesSnapshot)
async def stream_series(request: Request, asset_id: str, window: Optional[TimeWindow] = None) -> SeriesSnapshot:
    """Historical series merged with whatever live points arrived while it loaded."""
    session = _session(request)
    reconciler = SeriesReconciler(
        session.manager,
        session.history_fetcher,
        default_window=session.settings.CHART_DEFAULT_WINDOW,
        max_live_points=session.settings.LIVE_BUFFER_MAX_POINTS,
    )
    try:
        await reconciler.select(asset_id, window)
        await reconciler.wait_for_history()
        if reconciler.error is not None:
            raise reconciler.error
        return reconciler.snapshot()
    finally:
        await reconciler.close()
