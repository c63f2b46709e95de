"""
Status Indicator Service for the link state.

Bridges link client events to Qt signals so a GUI can show a single
global status (disconnected, searching, connected) plus telemetry and
errors. Dispatcher events arrive on the dispatcher thread; emitting
through pyqtSignal lets Qt queue them onto the receiver's thread.
"""

import logging
from enum import Enum
from typing import Optional

from PyQt5.QtCore import QObject, pyqtSignal

from locolink.core.events import EventDispatcher, LinkEvent


class GlobalStatus(Enum):
    """
    Global link status states.

    These map to visual indicator colors:
    - DISCONNECTED: Grey
    - SEARCHING: Orange (attempt running or waiting for retry)
    - CONNECTED: Green
    """
    DISCONNECTED = "disconnected"
    SEARCHING = "searching"
    CONNECTED = "connected"


class LinkStatusService(QObject):
    """
    Service for tracking and broadcasting the link status.

    Signals:
        status_changed: Emitted when global status changes (GlobalStatus, str)
        searching_changed: Searching indicator turned on or off
        telemetry_received: One formatted telemetry line
        error_occurred: Error message from the link
        reachability_changed: Result of the endpoint probe changed
    """

    status_changed = pyqtSignal(object, str)  # (GlobalStatus, description_text)
    searching_changed = pyqtSignal(bool)
    telemetry_received = pyqtSignal(str)
    error_occurred = pyqtSignal(str)
    reachability_changed = pyqtSignal(bool)

    def __init__(self, dispatcher: Optional[EventDispatcher] = None):
        """
        Initialize status indicator service.

        Args:
            dispatcher: Optional event dispatcher to listen to
        """
        super().__init__()

        self.logger = logging.getLogger(__name__)
        self._dispatcher: Optional[EventDispatcher] = None

        self._current_status = GlobalStatus.DISCONNECTED
        self._is_connected = False
        self._is_searching = False
        self._is_reachable = False

        self._handlers = {
            LinkEvent.STATUS_CHANGED: self.on_status_event,
            LinkEvent.CONNECTING_STARTED: self.on_searching_started,
            LinkEvent.CONNECTING_STOPPED: self.on_searching_stopped,
            LinkEvent.TELEMETRY_LINE: self.on_telemetry_line,
            LinkEvent.ERROR: self.on_error,
            LinkEvent.REACHABILITY_CHANGED: self.on_reachability_changed,
        }

        if dispatcher is not None:
            self.attach(dispatcher)

        self.logger.info("LinkStatusService initialized")

    def attach(self, dispatcher: EventDispatcher) -> None:
        """Listen to a dispatcher, detaching from the previous one."""
        self.detach()
        self._dispatcher = dispatcher
        for event, handler in self._handlers.items():
            dispatcher.register_handler(event, handler)
        self.logger.debug("Attached to event dispatcher")

    def detach(self) -> None:
        if self._dispatcher is None:
            return
        for event, handler in self._handlers.items():
            self._dispatcher.unregister_handler(event, handler)
        self._dispatcher = None

    def on_status_event(self, status: str) -> None:
        """Handle a "connected"/"disconnected" status from the client."""
        self.logger.info(f"Link {status}")
        self._is_connected = status == "connected"
        self._update_status()

    def on_searching_started(self) -> None:
        self._set_searching(True)

    def on_searching_stopped(self) -> None:
        self._set_searching(False)

    def _set_searching(self, searching: bool) -> None:
        if self._is_searching == searching:
            return
        self._is_searching = searching
        self.searching_changed.emit(searching)
        self._update_status()

    def on_telemetry_line(self, line: str) -> None:
        self.telemetry_received.emit(line)

    def on_error(self, message: str) -> None:
        self.logger.debug(f"Link error: {message}")
        self.error_occurred.emit(message)

    def on_reachability_changed(self, reachable: bool) -> None:
        self._is_reachable = reachable
        self.reachability_changed.emit(reachable)

    def _update_status(self):
        """
        Update global status based on current state flags.

        Priority order (highest to lowest):
        1. CONNECTED - session established
        2. SEARCHING - attempt running or waiting for retry
        3. DISCONNECTED
        """
        new_status = self._calculate_status()

        if new_status != self._current_status:
            old_status = self._current_status
            self._current_status = new_status

            description = self._get_status_description(new_status)
            self.logger.info(
                f"Status changed: {old_status.value} -> {new_status.value} ({description})"
            )
            self.status_changed.emit(new_status, description)

    def _calculate_status(self) -> GlobalStatus:
        if self._is_connected:
            return GlobalStatus.CONNECTED
        if self._is_searching:
            return GlobalStatus.SEARCHING
        return GlobalStatus.DISCONNECTED

    def _get_status_description(self, status: GlobalStatus) -> str:
        descriptions = {
            GlobalStatus.DISCONNECTED: "Disconnected",
            GlobalStatus.SEARCHING: "Searching",
            GlobalStatus.CONNECTED: "Connected",
        }
        return descriptions.get(status, "Unknown")

    def get_current_status(self) -> GlobalStatus:
        return self._current_status

    def get_status_description(self) -> str:
        """
        Get description of current status.

        Returns:
            Human-readable status description
        """
        return self._get_status_description(self._current_status)

    def is_reachable(self) -> bool:
        return self._is_reachable
