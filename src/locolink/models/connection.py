"""
Connection models for locolink.

This module provides the data structures shared between the link client,
the reconnect supervisor and the liveness monitor.

Classes:
    ConnectionState: Enumeration of connection states
    TargetEndpoint: Mutable host/port read as an atomic snapshot
    AutoReconnectMode: Enabled/paused flags for the reconnect loop
    LinkStatus: Immutable snapshot of the link as seen by a UI layer
    LinkStatusModel: Observable, thread-safe holder of the current LinkStatus
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

PORT_MIN = 1
PORT_MAX = 65535


class ConnectionState(Enum):
    """
    Enumeration of possible connection states.

    States:
        IDLE: Nothing attempted yet
        CONNECTING: Connection attempt in progress
        CONNECTED: Session established
        DISCONNECTED: Session ended or attempt failed
    """

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


def is_valid_endpoint(host: Optional[str], port: Optional[int]) -> bool:
    """True if host is non-blank and port is an int in 1..65535."""
    if host is None or not isinstance(host, str) or not host.strip():
        return False
    if isinstance(port, bool) or not isinstance(port, int):
        return False
    return PORT_MIN <= port <= PORT_MAX


class TargetEndpoint:
    """
    Host/port the supervisor connects to.

    The pair is stored as a single tuple, so ``snapshot()`` never returns a
    host from one update and a port from another. Updating the target does
    not touch an active session; only future attempts use it.

    Example:
        >>> endpoint = TargetEndpoint("192.168.2.6", 9000)
        >>> endpoint.update("10.0.0.5", 9001)
        >>> endpoint.snapshot()
        ('10.0.0.5', 9001)
    """

    def __init__(self, host: Optional[str] = None, port: int = -1):
        self._value: Tuple[Optional[str], int] = (host, port)

    def update(self, host: Optional[str], port: int) -> None:
        self._value = (host.strip() if isinstance(host, str) else host, port)

    def snapshot(self) -> Tuple[Optional[str], int]:
        return self._value

    @property
    def host(self) -> Optional[str]:
        return self._value[0]

    @property
    def port(self) -> int:
        return self._value[1]

    def is_valid(self) -> bool:
        host, port = self._value
        return is_valid_endpoint(host, port)

    def __repr__(self) -> str:
        host, port = self._value
        return f"TargetEndpoint({host!r}, {port})"


@dataclass
class AutoReconnectMode:
    """
    Flags controlling the reconnect loop.

    Attributes:
        enabled: Monitoring is active (set on start, cleared on shutdown)
        paused: Temporarily suspended without losing the target
    """

    enabled: bool = False
    paused: bool = False

    @property
    def active(self) -> bool:
        return self.enabled and not self.paused


@dataclass(frozen=True)
class LinkStatus:
    """
    Snapshot of the link as exposed to UI layers.

    Attributes:
        state: Current connection state
        searching: A reconnect attempt or outage is visible (stays True
            while waiting for the next retry)
        connected: Last liveness verdict for the session
        reachable: Last verdict of the independent endpoint probe
        host: Target host at the time of the snapshot
        port: Target port at the time of the snapshot
        connected_at: When the current session was established
        last_error: Last error message reported, if any
    """

    state: ConnectionState = ConnectionState.IDLE
    searching: bool = False
    connected: bool = False
    reachable: bool = False
    host: Optional[str] = None
    port: Optional[int] = None
    connected_at: Optional[datetime] = None
    last_error: Optional[str] = None


class LinkStatusModel:
    """
    Observable holder of the current LinkStatus.

    Replaces process-wide status flags with an object that is passed to
    whoever needs it. Observers are called with the new snapshot after every
    change, outside the model lock.

    Example:
        >>> model = LinkStatusModel()
        >>> model.add_observer(lambda status: print(status.state.value))
        >>> model.update(state=ConnectionState.CONNECTING)
        connecting
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._status = LinkStatus()
        self._observers: List[Callable[[LinkStatus], None]] = []

    @property
    def status(self) -> LinkStatus:
        """Current snapshot."""
        return self._status

    def update(self, **changes) -> LinkStatus:
        """
        Replace fields of the current status and notify observers.

        Args:
            **changes: LinkStatus field names and their new values

        Returns:
            The previous snapshot, so callers can detect transitions.
        """
        with self._lock:
            previous = self._status
            self._status = replace(previous, **changes)
            current = self._status
            observers = list(self._observers)

        if current != previous:
            for observer in observers:
                try:
                    observer(current)
                except Exception as e:
                    logger.error(f"Status observer error: {e}", exc_info=True)
        return previous

    def add_observer(self, callback: Callable[[LinkStatus], None]) -> None:
        """Register a callback to be notified of status changes."""
        with self._lock:
            if callback not in self._observers:
                self._observers.append(callback)

    def remove_observer(self, callback: Callable[[LinkStatus], None]) -> None:
        """Unregister a callback. Unknown callbacks are ignored."""
        with self._lock:
            if callback in self._observers:
                self._observers.remove(callback)
