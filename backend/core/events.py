"""In-process event emitter.

Registries publish named lifecycle events (``tenant:created``,
``automation:executed`` ...) to an explicit observer list. Observers are
plain callables taking ``(event, payload)``; a failing observer is logged
and never interrupts the mutation that emitted the event.
"""

import threading
from typing import Any, Callable, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)

EventHandler = Callable[[str, Dict[str, Any]], None]

WILDCARD = "*"


class EventEmitter:
    """Synchronous observer list keyed by event name."""

    def __init__(self):
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event: str, handler: EventHandler) -> Callable[[], None]:
        """Register a handler for an event name, or ``*`` for every event.

        Returns:
            A callable that removes the subscription
        """
        with self._lock:
            self._handlers.setdefault(event, []).append(handler)

        def _unsubscribe() -> None:
            self.unsubscribe(event, handler)

        return _unsubscribe

    def unsubscribe(self, event: str, handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

    def emit(self, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        """Deliver an event to its subscribers and to wildcard subscribers."""
        payload = payload or {}
        with self._lock:
            handlers = list(self._handlers.get(event, [])) + list(self._handlers.get(WILDCARD, []))

        for handler in handlers:
            try:
                handler(event, payload)
            except Exception as e:
                logger.error("Event handler failed", event_name=event, error=str(e))

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()

    def listener_count(self, event: str) -> int:
        with self._lock:
            return len(self._handlers.get(event, []))
