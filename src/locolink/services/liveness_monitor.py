"""
Liveness monitor.

Runs the connection health check on its own background thread: a
session-level check (shutdown flags plus an urgent-data probe) and an
independent reachability probe against the configured endpoint. The two
verdicts are stored as separate booleans in the status model.

A session that looks alive while the endpoint probe fails is treated as a
zombie and force-disconnected, so a stuck half-open socket cannot hide an
outage. The reconnect supervisor picks the link up again on its next tick.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from locolink.core.events import EventDispatcher, LinkEvent
from locolink.models.connection import LinkStatusModel

logger = logging.getLogger(__name__)

DEFAULT_LIVENESS_INTERVAL = 1.0
DEFAULT_PROBE_TIMEOUT_MS = 600


@dataclass(frozen=True)
class HealthReport:
    """
    Result of one health check.

    Attributes:
        phase: Label of the check ("init", "tick", ...), used in logs
        alive: Final liveness verdict (False for a zombie)
        reachable: Result of the endpoint probe
        zombie: Session looked alive but the probe failed
        forced_disconnect: The check closed the session
    """

    phase: str
    alive: bool
    reachable: bool
    zombie: bool = False
    forced_disconnect: bool = False


class LivenessMonitor:
    """
    Periodic health check for the link client.

    Blocking probes happen on the monitor's thread, never on the caller's,
    unless ``check()`` is called directly.
    """

    def __init__(
        self,
        client,
        status_model: LinkStatusModel,
        dispatcher: Optional[EventDispatcher] = None,
        interval: float = DEFAULT_LIVENESS_INTERVAL,
        probe_timeout_ms: int = DEFAULT_PROBE_TIMEOUT_MS
    ):
        """
        Initialize the monitor.

        Args:
            client: LinkClient (or compatible) providing check_connection_alive,
                is_endpoint_reachable and disconnect
            status_model: Model receiving the connected/reachable verdicts
            dispatcher: Optional dispatcher for LIVENESS/REACHABILITY events
            interval: Seconds between checks
            probe_timeout_ms: Timeout of the reachability probe
        """
        self._client = client
        self._status_model = status_model
        self._dispatcher = dispatcher
        self.interval = interval
        self.probe_timeout_ms = probe_timeout_ms

        self._lock = threading.Lock()
        self._check_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def start(self) -> None:
        """Run an "init" check right away, then a "tick" check every interval."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event,),
                name="LivenessMonitor",
                daemon=True
            )
            self._thread.start()
        logger.info(f"Liveness monitor started (every {self.interval}s)")

    def stop(self, timeout: float = 2.0) -> None:
        with self._lock:
            thread, self._thread = self._thread, None
            self._stop_event.set()

        if thread is None:
            return
        if thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Liveness monitor did not stop cleanly")
        logger.info("Liveness monitor stopped")

    def is_running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def _run(self, stop_event: threading.Event) -> None:
        phase = "init"
        while not stop_event.is_set():
            try:
                self.check(phase)
            except Exception as e:
                logger.error(f"Health check failed (phase={phase}): {e}", exc_info=True)
            phase = "tick"
            stop_event.wait(self.interval)

    def check(self, phase: str = "manual") -> HealthReport:
        """
        Run one health check and reconcile the two verdicts.

        Performs blocking I/O; call from a background thread.
        """
        with self._check_lock:
            previous = self._status_model.status
            was_connected = previous.connected
            was_reachable = previous.reachable

            alive = self._client.check_connection_alive()
            # Probe even when the session looks alive, to catch zombies
            reachable = self._client.is_endpoint_reachable(self.probe_timeout_ms)

            if was_connected and not self._status_model.status.connected:
                # The session closed during the probes and its close was
                # already reported; disconnecting now would cancel the retry.
                logger.debug(f"Session closed during health check (phase={phase})")
                was_connected = False
                alive = False

            zombie = False
            forced = False
            if alive and not reachable:
                logger.warning(
                    "Zombie TCP socket detected (socket alive, probe failed). Forcing disconnect"
                )
                zombie = True
                alive = False
                self._client.disconnect()
                forced = True

            if was_connected != alive:
                logger.warning(
                    f"TCP connection state changed: {was_connected} -> {alive} (phase={phase})"
                )
                if was_connected and not alive and not forced:
                    logger.error(f"Connection lost, forcing disconnect (phase={phase})")
                    self._client.disconnect()
                    forced = True

            if was_reachable != reachable:
                logger.warning(
                    f"TCP reachability changed: {was_reachable} -> {reachable} (phase={phase})"
                )

            self._status_model.update(connected=alive, reachable=reachable)

            if self._dispatcher is not None:
                if was_connected != alive:
                    self._dispatcher.publish(LinkEvent.LIVENESS_CHANGED, alive)
                if was_reachable != reachable:
                    self._dispatcher.publish(LinkEvent.REACHABILITY_CHANGED, reachable)

            return HealthReport(
                phase=phase,
                alive=alive,
                reachable=reachable,
                zombie=zombie,
                forced_disconnect=forced
            )
