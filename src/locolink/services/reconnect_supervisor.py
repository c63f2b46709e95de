"""
Reconnect supervisor.

A fixed-period control loop that keeps one session open to the configured
target while auto-reconnect is enabled. Each tick is a small state machine:

    disabled or paused      -> searching off, nothing else
    invalid target          -> skip tick
    connected               -> searching off, skip
    attempt already running -> skip (no overlapping attempts)
    otherwise               -> searching on, start one attempt

Failed attempts are simply retried on the next tick; nothing here raises.
"""

import logging
import threading
from enum import Enum
from typing import Optional

from locolink.models.connection import (
    AutoReconnectMode,
    TargetEndpoint,
    is_valid_endpoint,
)

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_INTERVAL = 1.0


class TickOutcome(Enum):
    """What a single supervisor tick decided."""
    INACTIVE = "inactive"
    INVALID_TARGET = "invalid_target"
    CONNECTED = "connected"
    IN_FLIGHT = "in_flight"
    ATTEMPT_STARTED = "attempt_started"
    FAILED = "failed"


class ReconnectSupervisor:
    """
    Periodically asks the link client to (re)connect.

    The supervisor only starts or stops whole sessions through the client
    (``is_connected``, ``is_connecting``, ``set_searching``, ``connect``);
    it never touches a session's socket.
    """

    def __init__(
        self,
        client,
        endpoint: TargetEndpoint,
        mode: AutoReconnectMode,
        interval: float = DEFAULT_RECONNECT_INTERVAL
    ):
        """
        Initialize the supervisor.

        Args:
            client: LinkClient (or compatible) that owns the sessions
            endpoint: Target endpoint, snapshot-read on every tick
            mode: Auto-reconnect flags, read on every tick
            interval: Seconds between ticks
        """
        self._client = client
        self._endpoint = endpoint
        self._mode = mode
        self.interval = interval

        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._ticks = 0

    def start(self) -> None:
        """Start (or restart) the tick loop. The first tick runs immediately."""
        self.stop()
        with self._lock:
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event,),
                name="ReconnectSupervisor",
                daemon=True
            )
            self._thread.start()
        logger.info(f"Reconnect supervisor started (every {self.interval}s)")

    def stop(self, timeout: float = 2.0) -> None:
        """Stop the tick loop; a tick in progress is allowed to finish."""
        with self._lock:
            thread, self._thread = self._thread, None
            self._stop_event.set()

        if thread is None:
            return
        if thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Reconnect supervisor did not stop cleanly")
        logger.info("Reconnect supervisor stopped")

    def is_running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    @property
    def ticks(self) -> int:
        return self._ticks

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            self.tick()
            stop_event.wait(self.interval)

    def tick(self) -> TickOutcome:
        """Run one iteration of the reconnect state machine."""
        self._ticks += 1
        try:
            if not self._mode.active:
                self._client.set_searching(False)
                return TickOutcome.INACTIVE

            host, port = self._endpoint.snapshot()
            if not is_valid_endpoint(host, port):
                return TickOutcome.INVALID_TARGET

            if self._client.is_connected():
                self._client.set_searching(False)
                return TickOutcome.CONNECTED

            if self._client.is_connecting():
                return TickOutcome.IN_FLIGHT

            self._client.set_searching(True)
            if self._client.connect(host, port):
                logger.debug(f"Reconnect attempt started for {host}:{port}")
                return TickOutcome.ATTEMPT_STARTED
            return TickOutcome.IN_FLIGHT

        except Exception as e:
            logger.error(f"Reconnect tick failed: {e}", exc_info=True)
            return TickOutcome.FAILED
