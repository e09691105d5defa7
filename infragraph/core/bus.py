"""Explicit publish/subscribe bus.

An EventBus instance is constructed by the caller and passed to the
components that emit diagnostics, so there is no process-wide listener
registry.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Handler = Callable[[str, Dict[str, Any]], None]

# Topics emitted by InfraGraph components
API_CALL = "api.call"
CHANGE_RECORDED = "change.recorded"
SYNC_COMPLETED = "sync.completed"
ALERT_FIRED = "alert.fired"
CYCLE_COMPLETED = "cycle.completed"

WILDCARD = "*"


class EventBus:
    """Synchronous in-process event bus.

    Handlers run on the emitting thread. A failing handler is logged and
    never affects the emitter or the other handlers.

    Example:
        >>> bus = EventBus()
        >>> bus.subscribe("alert.fired", lambda topic, payload: print(payload))
        >>> bus.emit("alert.fired", {"rule_id": "orphan"})
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, topic: str, handler: Handler) -> None:
        """Register a handler for a topic, or '*' for every topic."""
        with self._lock:
            self._handlers[topic].append(handler)

    def unsubscribe(self, topic: str, handler: Handler) -> bool:
        with self._lock:
            handlers = self._handlers.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)
                return True
            return False

    def emit(self, topic: str, payload: Dict[str, Any]) -> int:
        """Deliver a payload to the topic's handlers.

        Returns:
            Number of handlers that ran without raising
        """
        with self._lock:
            handlers = list(self._handlers.get(topic, [])) + list(self._handlers.get(WILDCARD, []))

        delivered = 0
        for handler in handlers:
            try:
                handler(topic, payload)
                delivered += 1
            except Exception as e:
                logger.warning("Event handler for %s failed: %s", topic, e)
        return delivered
