"""
Small publish/subscribe helper shared by the transport and the registry.

Delivery contract:
- handlers run synchronously, in subscription order
- a handler that raises is logged and skipped; the rest still run
"""

import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Union

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]
EventKey = Union[Enum, str]


def event_name(event: EventKey) -> str:
    """Enum members and plain strings share one key space (the wire name)."""
    return event.value if isinstance(event, Enum) else str(event)


class EventBus:
    """String-keyed handler lists with isolated-failure fan-out."""

    def __init__(self, owner: str = "events") -> None:
        self.owner = owner
        self._handlers: Dict[str, List[Handler]] = {}
        self._lock = threading.Lock()

    def on(self, event: EventKey, handler: Handler) -> None:
        key = event_name(event)
        with self._lock:
            handlers = self._handlers.setdefault(key, [])
            if handler not in handlers:
                handlers.append(handler)

    def off(self, event: EventKey, handler: Handler) -> None:
        key = event_name(event)
        with self._lock:
            handlers = self._handlers.get(key)
            if handlers and handler in handlers:
                handlers.remove(handler)

    def emit(self, event: EventKey, data: Any = None) -> int:
        """Deliver to every handler; returns how many completed without raising."""
        key = event_name(event)
        with self._lock:
            handlers = list(self._handlers.get(key, ()))

        delivered = 0
        for handler in handlers:
            try:
                handler(data)
                delivered += 1
            except Exception as e:
                logger.error(f"[{self.owner}] handler error ({key}): {e}", exc_info=True)
        return delivered

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()
