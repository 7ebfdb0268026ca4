"""
Price stream ops service - FastAPI app.

Owns one PriceFeedSession for the process lifetime and exposes its
connection controls, series snapshots and metrics.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from pricestream.config import settings
from pricestream.middleware.error_handler import register_exception_handlers
from pricestream.observability.logs import setup_logging
from pricestream.observability.metrics import create_metrics_router
from pricestream.routes_stream import router as stream_router
from pricestream.services.price_feed_manager import PriceFeedSession

setup_logging(settings.LOG_LEVEL, settings.LOG_FILE or None)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the session on startup and tear it down on shutdown."""
    session = PriceFeedSession.create(settings)
    app.state.session = session
    logger.info("Price feed session started")
    try:
        yield
    finally:
        try:
            await session.shutdown()
            logger.info("Price feed session stopped")
        except Exception as e:
            logger.error(f"Error stopping price feed session: {e}")


app = FastAPI(title="Price Stream", version="0.1.0", lifespan=lifespan)

app.include_router(stream_router)
app.include_router(create_metrics_router())

register_exception_handlers(app)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
