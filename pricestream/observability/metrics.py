"""
Observability metrics for the price stream.
Counters and gauges for the connection, the series reconciler and quote requests.
"""

from fastapi import APIRouter, Response
from typing import Dict, List
import json


# Simple metrics tracking without Prometheus dependency
class SimpleMetrics:
    """Simple metrics tracking for observability."""

    def __init__(self):
        self.counters: Dict[str, int] = {}
        self.gauges: Dict[str, float] = {}
        self.histograms: Dict[str, List[float]] = {}

    @staticmethod
    def _key(name: str, labels: Dict[str, str] = None) -> str:
        if not labels:
            return name
        return f"{name}_{json.dumps(labels, sort_keys=True)}"

    def inc_counter(self, name: str, labels: Dict[str, str] = None):
        """Increment a counter."""
        key = self._key(name, labels)
        self.counters[key] = self.counters.get(key, 0) + 1

    def set_gauge(self, name: str, value: float, labels: Dict[str, str] = None):
        """Set a gauge value."""
        self.gauges[self._key(name, labels)] = value

    def observe_histogram(self, name: str, value: float, labels: Dict[str, str] = None):
        """Observe a histogram value."""
        key = self._key(name, labels)
        if key not in self.histograms:
            self.histograms[key] = []
        self.histograms[key].append(value)
        # Keep only last 1000 samples
        if len(self.histograms[key]) > 1000:
            self.histograms[key] = self.histograms[key][-1000:]

    def get_counter(self, name: str, labels: Dict[str, str] = None) -> int:
        return self.counters.get(self._key(name, labels), 0)

    def get_metrics(self) -> str:
        """Get metrics in text format."""
        lines = []
        for key, value in self.counters.items():
            lines.append(f"# TYPE {key.split('_{')[0]} counter")
            lines.append(f"{key} {value}")
        for key, value in self.gauges.items():
            lines.append(f"# TYPE {key.split('_{')[0]} gauge")
            lines.append(f"{key} {value}")
        for key, values in self.histograms.items():
            if values:
                lines.append(f"# TYPE {key.split('_{')[0]} histogram")
                lines.append(f"{key}_count {len(values)}")
                lines.append(f"{key}_sum {sum(values)}")
                lines.append(f"{key}_avg {sum(values)/len(values)}")
        return "\n".join(lines)

    def reset(self):
        self.counters.clear()
        self.gauges.clear()
        self.histograms.clear()


# Global metrics instance
_metrics = SimpleMetrics()


def get_registry() -> SimpleMetrics:
    return _metrics


def record_ws_state(state: str):
    """Record connection state transition."""
    _metrics.inc_counter("ws_transitions", {"state": state})


def record_ws_reconnect(delay_s: float):
    """Record a scheduled reconnect and its backoff delay."""
    _metrics.inc_counter("ws_reconnects")
    _metrics.observe_histogram("ws_backoff_s", delay_s)


def record_ws_retries_exhausted():
    _metrics.inc_counter("ws_retries_exhausted")


def record_ws_message(msg_type: str):
    """Record WebSocket message received."""
    _metrics.inc_counter("ws_messages", {"type": msg_type})


def record_ws_parse_error():
    _metrics.inc_counter("ws_parse_errors")


def record_history_fetch(asset_id: str, ok: bool, duration_ms: float):
    """Record a historical series fetch."""
    _metrics.inc_counter("history_fetches", {"asset": asset_id, "status": "ok" if ok else "error"})
    _metrics.observe_histogram("history_fetch_ms", duration_ms)


def record_stale_discard(kind: str):
    """Record a result dropped because newer state superseded it."""
    _metrics.inc_counter("stale_discards", {"kind": kind})


def record_quote_request(ok: bool, duration_ms: float):
    _metrics.inc_counter("quote_requests", {"status": "ok" if ok else "error"})
    _metrics.observe_histogram("quote_request_ms", duration_ms)


def get_metrics() -> str:
    """Get metrics in text format."""
    return _metrics.get_metrics()


def create_metrics_router() -> APIRouter:
    """Create FastAPI router for metrics endpoint."""
    router = APIRouter()

    @router.get("/ops/metrics")
    def metrics():
        """Metrics endpoint."""
        return Response(get_metrics(), media_type="text/plain")

    return router
