"""
Ordered event delivery for link status and telemetry.

Socket threads never call application handlers directly. They publish
events into a FIFO queue that a single delivery thread drains, so handlers
see events in the order they were produced, each exactly once, and a slow
or failing handler cannot stall or kill a socket thread.

Architecture:
    reader / writer / supervisor threads
        └── EventDispatcher.publish(event, payload)
    EventDispatcher (delivery thread)
        └── Calls registered handlers for each LinkEvent in order
        └── Logs handler exceptions and keeps going
"""

import logging
import queue
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class LinkEvent(Enum):
    """Events published by the link client."""
    CONNECTING_STARTED = "connecting_started"
    CONNECTING_STOPPED = "connecting_stopped"
    STATUS_CHANGED = "status_changed"      # payload: "connected" | "disconnected"
    TELEMETRY_LINE = "telemetry_line"      # payload: str
    FRAME = "frame"                        # payload: Frame
    ERROR = "error"                        # payload: str
    REACHABILITY_CHANGED = "reachability_changed"  # payload: bool
    LIVENESS_CHANGED = "liveness_changed"          # payload: bool


# Marker put on the queue by flush(); never delivered to handlers
_FLUSH = object()
_STOP = object()


class EventDispatcher:
    """
    Routes published events to registered handlers on one delivery thread.

    Example:
        >>> dispatcher = EventDispatcher()
        >>> dispatcher.register_handler(LinkEvent.TELEMETRY_LINE, print)
        >>> dispatcher.publish(LinkEvent.TELEMETRY_LINE, "cmd=0x03 loco=3 state=2")
        >>> dispatcher.flush()
        cmd=0x03 loco=3 state=2
        True
        >>> dispatcher.stop()
    """

    def __init__(self, name: str = "LinkEvents"):
        self._lock = threading.Lock()
        self._handlers: Dict[LinkEvent, List[Callable[..., None]]] = {}
        self._queue: queue.Queue = queue.Queue()
        self._running = True

        self._stats = {
            'events_published': 0,
            'events_delivered': 0,
            'handler_errors': 0,
        }

        self._thread = threading.Thread(
            target=self._delivery_loop,
            name=name,
            daemon=True
        )
        self._thread.start()

    def register_handler(self, event: LinkEvent, handler: Callable[..., None]) -> None:
        """
        Register a handler for an event type.

        Handlers for events without a payload are called with no arguments,
        all others with the payload as the single argument.
        """
        with self._lock:
            self._handlers.setdefault(event, [])
            if handler not in self._handlers[event]:
                self._handlers[event].append(handler)

    def unregister_handler(self, event: LinkEvent, handler: Callable[..., None]) -> None:
        """Remove a handler. Unknown handlers are ignored."""
        with self._lock:
            handlers = self._handlers.get(event)
            if handlers and handler in handlers:
                handlers.remove(handler)

    def publish(self, event: LinkEvent, payload: Any = None) -> None:
        """Queue an event for delivery. Never blocks."""
        if not self._running:
            logger.debug(f"Dispatcher stopped, dropping {event.value}")
            return
        self._stats['events_published'] += 1
        self._queue.put((event, payload))

    def flush(self, timeout: Optional[float] = 2.0) -> bool:
        """
        Wait until everything published before this call has been delivered.

        Returns:
            True if delivery caught up, False on timeout or if stopped.
        """
        if not self._running or threading.current_thread() is self._thread:
            return False
        marker = threading.Event()
        self._queue.put((_FLUSH, marker))
        return marker.wait(timeout)

    def stop(self, timeout: float = 2.0) -> None:
        """Deliver what is already queued, then stop the delivery thread."""
        with self._lock:
            if not self._running:
                return
            self._running = False
        self._queue.put((_STOP, None))
        if threading.current_thread() is not self._thread:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Event delivery thread did not stop cleanly")

    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> Dict[str, int]:
        """Get delivery statistics."""
        return self._stats.copy()

    def _delivery_loop(self) -> None:
        while True:
            event, payload = self._queue.get()
            if event is _STOP:
                break
            if event is _FLUSH:
                payload.set()
                continue
            self._deliver(event, payload)

    def _deliver(self, event: LinkEvent, payload: Any) -> None:
        with self._lock:
            handlers = list(self._handlers.get(event, ()))

        # Call handlers outside the lock so they may (un)register handlers
        for handler in handlers:
            try:
                if payload is None:
                    handler()
                else:
                    handler(payload)
            except Exception as e:
                self._stats['handler_errors'] += 1
                logger.error(f"Handler error for {event.value}: {e}", exc_info=True)
        self._stats['events_delivered'] += 1
