"""
Link client: the public API of the framed-protocol connection.

The client owns at most one ConnectionSession at a time, turns decoded
frames into telemetry events, and hosts the reconnect supervisor and the
liveness monitor. I/O failures never escape as exceptions; they are
reported through the error and status callbacks instead.

Example:
    >>> client = LinkClient(on_telemetry_line=print)
    >>> client.enable_auto_connect("192.168.2.6", 9000)
    >>> client.send_control(device_id=3, state=2)
    >>> client.shutdown()
"""

import logging
import socket
import threading
from datetime import datetime
from typing import Callable, Optional, Set, Union

from locolink.core.connection_session import ConnectionSession
from locolink.core.errors import ErrorCodes, LocoLinkError, ProtocolError
from locolink.core.events import EventDispatcher, LinkEvent
from locolink.core.frame_codec import (
    Frame,
    encode,
    encode_control,
    format_telemetry_line,
    frame_to_hex,
)
from locolink.models.connection import (
    AutoReconnectMode,
    ConnectionState,
    LinkStatusModel,
    TargetEndpoint,
    is_valid_endpoint,
)
from locolink.services.configuration_service import LinkConfig
from locolink.services.liveness_monitor import LivenessMonitor
from locolink.services.reconnect_supervisor import ReconnectSupervisor

STATUS_CONNECTED = "connected"
STATUS_DISCONNECTED = "disconnected"
MIN_PROBE_TIMEOUT_MS = 100


class LinkClient:
    """
    Resilient client for the hardware link.

    Callbacks are delivered on the dispatcher's thread, in the order the
    events happened:
        on_connecting_started(), on_connecting_stopped(),
        on_telemetry_line(text), on_frame(frame), on_error(message),
        on_status_changed("connected" | "disconnected")
    """

    def __init__(
        self,
        config: Optional[LinkConfig] = None,
        dispatcher: Optional[EventDispatcher] = None,
        status_model: Optional[LinkStatusModel] = None,
        session_factory: Callable[..., ConnectionSession] = ConnectionSession,
        on_connecting_started: Optional[Callable[[], None]] = None,
        on_connecting_stopped: Optional[Callable[[], None]] = None,
        on_telemetry_line: Optional[Callable[[str], None]] = None,
        on_frame: Optional[Callable[[Frame], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
        on_status_changed: Optional[Callable[[str], None]] = None
    ):
        """
        Initialize the client. No thread touches the network until
        connect() or enable_auto_connect() is called.

        Args:
            config: Link settings (defaults to LinkConfig())
            dispatcher: Event dispatcher to publish on (one is created and
                owned by the client if omitted)
            status_model: Shared status model (created if omitted)
            session_factory: Callable building sessions, replaced in tests
            on_*: Optional callbacks, registered on the dispatcher
        """
        self.logger = logging.getLogger(__name__)
        self.config = config or LinkConfig()

        self._owns_dispatcher = dispatcher is None
        self.dispatcher = dispatcher or EventDispatcher()
        self.status_model = status_model or LinkStatusModel()
        self.endpoint = TargetEndpoint()
        self.auto_mode = AutoReconnectMode()
        self._session_factory = session_factory

        self._lock = threading.RLock()
        self._session: Optional[ConnectionSession] = None
        self._pending: Optional[ConnectionSession] = None
        self._connecting = False
        self._searching = False
        # sessions whose "connected" status went out; each gets one "disconnected"
        self._announced: Set[ConnectionSession] = set()

        self.supervisor = ReconnectSupervisor(
            self, self.endpoint, self.auto_mode,
            interval=self.config.reconnect_interval
        )
        self.liveness = LivenessMonitor(
            self, self.status_model, self.dispatcher,
            interval=self.config.liveness_interval,
            probe_timeout_ms=self.config.probe_timeout_ms
        )

        callbacks = {
            LinkEvent.CONNECTING_STARTED: on_connecting_started,
            LinkEvent.CONNECTING_STOPPED: on_connecting_stopped,
            LinkEvent.TELEMETRY_LINE: on_telemetry_line,
            LinkEvent.FRAME: on_frame,
            LinkEvent.ERROR: on_error,
            LinkEvent.STATUS_CHANGED: on_status_changed,
        }
        for event, callback in callbacks.items():
            if callback is not None:
                self.dispatcher.register_handler(event, callback)

    # ========== Connection ==========

    def connect(self, host: str, port: int) -> bool:
        """
        Start an asynchronous connection attempt.

        Does nothing while an attempt is in flight or a session is
        connected, so overlapping calls never produce two sessions.

        Returns:
            True if a new attempt was started.
        """
        if not is_valid_endpoint(host, port):
            self.logger.debug(f"Ignoring connect to invalid endpoint {host!r}:{port}")
            return False
        host = host.strip()

        with self._lock:
            if self._connecting or self._session_connected():
                return False

            stale, self._session = self._session, None
            session = self._session_factory(
                host, port,
                on_frame=self._handle_frame,
                on_closed=self._handle_session_closed,
                on_error=self._report_error,
                read_size=self.config.read_chunk_size
            )
            self._pending = session
            self._connecting = True

            if not self.endpoint.is_valid():
                self.endpoint.update(host, port)

        if stale is not None:
            stale.close()

        self.set_searching(True)
        self.status_model.update(state=ConnectionState.CONNECTING, host=host, port=port)

        threading.Thread(
            target=self._run_attempt,
            args=(session,),
            name=f"LinkConnect-{host}:{port}",
            daemon=True
        ).start()
        return True

    def _run_attempt(self, session: ConnectionSession) -> None:
        try:
            session.open(timeout=self.config.connect_timeout)
        except LocoLinkError as e:
            with self._lock:
                cancelled = self._pending is not session
                if not cancelled:
                    self._pending = None
                    self._connecting = False
                    self.status_model.update(
                        state=ConnectionState.DISCONNECTED,
                        connected=False,
                        last_error=e.message
                    )
                    self.dispatcher.publish(LinkEvent.ERROR, e.message)
                    self.dispatcher.publish(LinkEvent.STATUS_CHANGED, STATUS_DISCONNECTED)
            if cancelled:
                self.logger.debug(f"Cancelled attempt ended: {e.message}")
            else:
                self.logger.warning(e.format_log_message())
                if not self.auto_mode.active:
                    # no retry is coming
                    self.set_searching(False)
            return

        with self._lock:
            cancelled = self._pending is not session
            alive = session.is_connected()
            if not cancelled:
                self._pending = None
                self._connecting = False
                if alive:
                    self._session = session
                    self._announced.add(session)
                    self.status_model.update(
                        state=ConnectionState.CONNECTED,
                        connected=True,
                        reachable=True,
                        connected_at=datetime.now(),
                        last_error=None
                    )
                    # Published under the lock so a racing close reports after us
                    self.dispatcher.publish(LinkEvent.STATUS_CHANGED, STATUS_CONNECTED)
                else:
                    self.status_model.update(state=ConnectionState.DISCONNECTED, connected=False)
                    self.dispatcher.publish(LinkEvent.STATUS_CHANGED, STATUS_DISCONNECTED)

        if cancelled:
            self.logger.info(f"Attempt to {session.host}:{session.port} was cancelled")
            session.close()
            return
        if not alive:
            self.logger.warning(f"Link to {session.host}:{session.port} dropped while connecting")
            return

        self.set_searching(False)
        self.logger.info(f"Link connected to {session.host}:{session.port}")

    def disconnect(self) -> None:
        """
        Close the current session and cancel an attempt in flight.

        Safe to call from any thread and any number of times.
        """
        with self._lock:
            session, self._session = self._session, None
            pending, self._pending = self._pending, None
            self._connecting = False

        if pending is not None:
            pending.close()
        if session is not None:
            self.logger.info(f"Disconnecting from {session.host}:{session.port}")
            session.close()

        with self._lock:
            if self._session is None and not self._connecting:
                self.status_model.update(state=ConnectionState.DISCONNECTED, connected=False)

    def _handle_session_closed(self, session: ConnectionSession) -> None:
        with self._lock:
            if self._session is session:
                self._session = None
            if session not in self._announced:
                # never reported as connected; the attempt thread reports it
                return
            self._announced.discard(session)
            if self._session is None and not self._connecting:
                self.status_model.update(state=ConnectionState.DISCONNECTED, connected=False)
            self.dispatcher.publish(LinkEvent.STATUS_CHANGED, STATUS_DISCONNECTED)
        self.logger.info(f"Link to {session.host}:{session.port} closed")

    def _session_connected(self) -> bool:
        return self._session is not None and self._session.is_connected()

    def is_connected(self) -> bool:
        with self._lock:
            return self._session_connected()

    def is_connecting(self) -> bool:
        return self._connecting

    # ========== Searching indicator ==========

    def set_searching(self, searching: bool) -> None:
        """Update the searching flag, publishing only on transitions."""
        with self._lock:
            if self._searching == searching:
                return
            self._searching = searching
            self.status_model.update(searching=searching)
            self.dispatcher.publish(
                LinkEvent.CONNECTING_STARTED if searching else LinkEvent.CONNECTING_STOPPED
            )

    @property
    def searching(self) -> bool:
        return self._searching

    # ========== Sending ==========

    def send_control(self, device_id: int, state: int) -> bool:
        """
        Send a control value to a device, fire-and-forget.

        Out-of-range values are clamped (device 1..8, state 1..6).

        Returns:
            True if the frame was queued, False if not connected.
        """
        return self._send(encode_control(device_id, state))

    def send_frame(self, device_id: int, payload: Union[bytes, bytearray] = b"") -> bool:
        """
        Send an arbitrary payload to a device, fire-and-forget.

        An oversized payload is reported through the error callback.
        """
        try:
            frame = encode(device_id, payload)
        except ValueError as e:
            error = ProtocolError(
                f"Cannot send to device {device_id}: {e}", device_id=device_id,
                error_code=ErrorCodes.PAYLOAD_TOO_LARGE, cause=e
            )
            self.logger.warning(error.format_log_message())
            self._report_error(error.message)
            return False
        return self._send(frame)

    def _send(self, frame: bytes) -> bool:
        with self._lock:
            session = self._session
        if session is None or not session.is_connected():
            self.logger.debug(f"Not connected, dropping {frame_to_hex(frame)}")
            return False
        queued = session.send(frame)
        if queued:
            self.logger.debug(f"Queued {frame_to_hex(frame)}")
        return queued

    # ========== Receiving ==========

    def _handle_frame(self, frame: Frame) -> None:
        self.dispatcher.publish(LinkEvent.FRAME, frame)
        self.dispatcher.publish(LinkEvent.TELEMETRY_LINE, format_telemetry_line(frame))

    def _report_error(self, message: str) -> None:
        self.status_model.update(last_error=message)
        self.dispatcher.publish(LinkEvent.ERROR, message)

    # ========== Liveness ==========

    def check_connection_alive(self) -> bool:
        """Session-level liveness check (blocking, call off the UI thread)."""
        with self._lock:
            session = self._session
        if session is None:
            return False
        return session.check_alive()

    def is_endpoint_reachable(self, timeout_ms: int = 600) -> bool:
        """
        Open and immediately close a separate probe connection to the target.

        Independent of the main session; tells "our session died" apart
        from "the endpoint is down". Blocking, call off the UI thread.
        """
        host, port = self.endpoint.snapshot()
        if not is_valid_endpoint(host, port):
            return False

        timeout = max(MIN_PROBE_TIMEOUT_MS, timeout_ms) / 1000.0
        try:
            with socket.create_connection((host, port), timeout=timeout):
                return True
        except (OSError, ValueError) as e:
            # ValueError: host names the resolver cannot encode
            self.logger.debug(f"Reachability probe to {host}:{port} failed: {e}")
            return False

    def start_monitoring(self) -> None:
        """Start the periodic liveness monitor (no-op if already running)."""
        self.liveness.start()

    def stop_monitoring(self) -> None:
        self.liveness.stop()

    # ========== Auto connect ==========

    def enable_auto_connect(self, host: str, port: int) -> None:
        """
        Set the target and (re)start the reconnect loop; the first tick runs
        immediately. An active session is left untouched.
        """
        self.endpoint.update(host, port)
        self.auto_mode.enabled = True
        self.supervisor.start()
        self.liveness.start()
        self.logger.info(f"Auto-connect enabled for {host}:{port}")

    def disable_auto_connect(self) -> None:
        """Stop the reconnect loop and clear the searching indicator."""
        self.auto_mode.enabled = False
        self.supervisor.stop()
        self.set_searching(False)
        self.logger.info("Auto-connect disabled")

    def pause_auto(self, paused: bool) -> None:
        """Suspend or resume reconnecting without forgetting the target."""
        self.auto_mode.paused = paused
        if paused:
            self.set_searching(False)
        self.logger.info(f"Auto-connect {'paused' if paused else 'resumed'}")

    def update_target(self, host: str, port: int) -> None:
        """Change the target for future attempts; does not disconnect."""
        self.endpoint.update(host, port)
        self.logger.info(f"Target updated to {host}:{port}")

    def get_target_host(self) -> Optional[str]:
        return self.endpoint.host

    def get_target_port(self) -> int:
        return self.endpoint.port

    # ========== Shutdown ==========

    def shutdown(self) -> None:
        """Stop all loops, close the session and drain pending callbacks."""
        self.stop_monitoring()
        self.disable_auto_connect()
        self.disconnect()
        if self._owns_dispatcher:
            self.dispatcher.flush()
            self.dispatcher.stop()
        self.logger.info("Link client shut down")
