"""
Callback registry with removal functions and snapshot dispatch.
"""

import logging
from typing import Any, Callable, Dict, Generic, TypeVar

logger = logging.getLogger(__name__)

H = TypeVar('H', bound=Callable[..., Any])

Remove = Callable[[], None]


class HandlerSet(Generic[H]):
    """
    Set of callbacks where each registration gets its own removal function.

    The same callable may be registered by two consumers; removing one
    registration leaves the other in place. Removal is idempotent.
    """

    def __init__(self, name: str):
        self.name = name
        self._handlers: Dict[object, H] = {}

    def add(self, handler: H) -> Remove:
        token = object()
        self._handlers[token] = handler

        def remove() -> None:
            self._handlers.pop(token, None)

        return remove

    def notify(self, *args: Any) -> None:
        """Call every handler registered when dispatch starts; one failing handler does not stop the rest."""
        for handler in list(self._handlers.values()):
            try:
                handler(*args)
            except Exception:
                logger.exception(f"[handlers] {self.name} handler raised")

    def clear(self) -> None:
        self._handlers.clear()

    def __len__(self) -> int:
        return len(self._handlers)
