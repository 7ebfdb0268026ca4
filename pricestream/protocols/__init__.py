"""
Protocols
Lightweight Protocols for the external collaborators of the price stream.
"""

from .price_feed import Connector, HistoryFetcher, QuoteProvider, Transport

__all__ = [
    "Connector",
    "HistoryFetcher",
    "QuoteProvider",
    "Transport",
]
