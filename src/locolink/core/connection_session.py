"""
Single TCP connection attempt to the hardware.

A ConnectionSession owns one socket from connect to close and is never
reused: a new attempt creates a new session.

Architecture:
    ConnectionSession
        └── open(): blocking connect with timeout
        └── reader thread: recv -> ReceiveAssembler -> on_frame(frame)
        └── writer thread: FIFO queue -> sendall (never blocks the reader)
        └── on_closed(session): reported exactly once when the session ends

States: CONNECTING -> CONNECTED -> CLOSED
"""

import logging
import queue
import socket
import threading
from enum import Enum
from typing import Callable, Dict, Optional

from .errors import ConnectionError, ErrorCodes
from .frame_codec import Frame, frame_to_hex
from .receive_assembler import ReceiveAssembler

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 2.0
DEFAULT_READ_SIZE = 512
URGENT_PROBE_BYTE = b"\xff"
# the socket is blocking, so the probe must not wait behind a full send buffer
URGENT_PROBE_FLAGS = socket.MSG_OOB | getattr(socket, "MSG_DONTWAIT", 0)


class SessionState(Enum):
    """Lifecycle of a single session."""
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


class ConnectionSession:
    """
    One TCP connection with a background reader and writer.

    Example:
        >>> session = ConnectionSession("127.0.0.1", 9000, on_frame=print)
        >>> session.open(timeout=2.0)
        >>> session.send(encode_control(3, 2))
        >>> session.close()
    """

    def __init__(
        self,
        host: str,
        port: int,
        on_frame: Optional[Callable[[Frame], None]] = None,
        on_closed: Optional[Callable[["ConnectionSession"], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
        read_size: int = DEFAULT_READ_SIZE
    ):
        """
        Initialize a session. Nothing touches the network until open().

        Args:
            host: Hardware host name or IP address
            port: Hardware TCP port
            on_frame: Called on the reader thread for every decoded frame
            on_closed: Called once when the session reaches CLOSED after
                having been connected
            on_error: Called with a message for read/write failures
            read_size: Maximum bytes per recv call
        """
        self.host = host
        self.port = port
        self._on_frame = on_frame
        self._on_closed = on_closed
        self._on_error = on_error
        self._read_size = read_size

        self._socket: Optional[socket.socket] = None
        self._assembler = ReceiveAssembler()
        self._write_queue: queue.Queue = queue.Queue()

        self._lock = threading.Lock()
        self._state = SessionState.CONNECTING
        self._running = False
        self._closed_reported = False
        self._input_shutdown = False
        self._output_shutdown = False
        self.last_error: Optional[ConnectionError] = None

        self._reader_thread: Optional[threading.Thread] = None
        self._writer_thread: Optional[threading.Thread] = None

        self._stats = {
            'bytes_read': 0,
            'bytes_written': 0,
            'frames_read': 0,
            'frames_written': 0,
        }

    # ========== Lifecycle ==========

    @property
    def state(self) -> SessionState:
        return self._state

    def is_connected(self) -> bool:
        """True while the session is CONNECTED and its socket is open."""
        with self._lock:
            return (self._state == SessionState.CONNECTED
                    and self._socket is not None
                    and self._socket.fileno() != -1)

    def open(self, timeout: float = DEFAULT_CONNECT_TIMEOUT) -> None:
        """
        Connect and start the reader and writer threads.

        Args:
            timeout: Connect timeout in seconds

        Raises:
            ConnectionError: If the connect fails or times out, or the
                session was already used. The session is CLOSED afterwards.
        """
        with self._lock:
            if self._state != SessionState.CONNECTING or self._socket is not None:
                raise ConnectionError(
                    "Session already used; create a new session for a new attempt",
                    host=self.host, port=self.port
                )
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            self._socket = sock

        logger.info(f"Connecting to {self.host}:{self.port} (timeout {timeout}s)")
        try:
            sock.settimeout(timeout)
            sock.connect((self.host, self.port))
            # blocking from here on; close() unblocks recv and sendall via shutdown
            sock.settimeout(None)
        except socket.timeout as e:
            self._abort_open()
            raise ConnectionError(
                f"Connection to {self.host}:{self.port} timed out after {timeout}s",
                host=self.host, port=self.port,
                error_code=ErrorCodes.CONNECTION_TIMEOUT, cause=e
            ) from e
        except OSError as e:
            self._abort_open()
            raise ConnectionError(
                f"Connection to {self.host}:{self.port} failed: {e}",
                host=self.host, port=self.port,
                error_code=ErrorCodes.CONNECTION_REFUSED, cause=e,
                suggestions=["Check that the hardware is powered and on the network",
                             "Check the configured host and port"]
            ) from e
        except ValueError as e:
            # host names the resolver cannot encode (e.g. an over-long label)
            self._abort_open()
            raise ConnectionError(
                f"Cannot connect to {self.host}:{self.port}: {e}",
                host=self.host, port=self.port,
                error_code=ErrorCodes.SOCKET_ERROR, cause=e,
                suggestions=["Check the configured host name"]
            ) from e

        with self._lock:
            if self._state == SessionState.CLOSED:
                # close() won the race while we were connecting
                raise ConnectionError(
                    f"Session to {self.host}:{self.port} closed during connect",
                    host=self.host, port=self.port
                )
            self._state = SessionState.CONNECTED
            self._running = True

            self._reader_thread = threading.Thread(
                target=self._read_loop,
                name=f"LinkReader-{self.host}:{self.port}",
                daemon=True
            )
            self._writer_thread = threading.Thread(
                target=self._write_loop,
                name=f"LinkWriter-{self.host}:{self.port}",
                daemon=True
            )
            self._reader_thread.start()
            self._writer_thread.start()

        logger.info(f"Connected to {self.host}:{self.port}")

    def _abort_open(self) -> None:
        with self._lock:
            sock, self._socket = self._socket, None
            self._state = SessionState.CLOSED
        if sock is not None:
            try:
                sock.close()
            except OSError as e:
                logger.debug(f"Error closing failed socket: {e}")

    def close(self, timeout: float = 2.0) -> None:
        """
        Stop both threads and close the socket.

        Safe to call repeatedly and from any thread, including from the
        session's own callbacks.
        """
        with self._lock:
            if self._state == SessionState.CLOSED and not self._running:
                return
            self._running = False
            sock = self._socket

        # Closing the socket unblocks a reader waiting in recv
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass  # not connected or already gone
            try:
                sock.close()
            except OSError as e:
                logger.debug(f"Error closing socket: {e}")

        self._write_queue.put(None)

        current = threading.current_thread()
        for thread in (self._reader_thread, self._writer_thread):
            if thread is not None and thread is not current and thread.is_alive():
                thread.join(timeout=timeout)
                if thread.is_alive():
                    logger.warning(f"{thread.name} did not stop cleanly")

        self._finish()

    def _finish(self) -> None:
        """Move to CLOSED and report the disconnect once."""
        with self._lock:
            self._running = False
            was_connected = self._state == SessionState.CONNECTED
            self._state = SessionState.CLOSED
            self._assembler.reset()
            if self._closed_reported:
                return
            self._closed_reported = True

        if was_connected:
            logger.info(f"Session {self.host}:{self.port} closed. Stats: {self._stats}")
            if self._on_closed:
                self._on_closed(self)

    # ========== Writing ==========

    def send(self, data: bytes) -> bool:
        """
        Queue an encoded frame for the writer thread.

        Returns:
            True if queued, False if the session is not connected (the
            frame is dropped silently).
        """
        if not self.is_connected():
            logger.debug("Send ignored, session not connected")
            return False
        self._write_queue.put(bytes(data))
        return True

    def _write_loop(self) -> None:
        logger.debug("Writer loop starting")
        while True:
            data = self._write_queue.get()
            if data is None or not self._running:
                break
            sock = self._socket
            if sock is None:
                break
            try:
                sock.sendall(data)
                self._stats['bytes_written'] += len(data)
                self._stats['frames_written'] += 1
                logger.debug(f"TX {frame_to_hex(data)}")
            except OSError as e:
                if self._running:
                    self._output_shutdown = True
                    self._report_io_error(f"TCP TX error: {e}", ErrorCodes.WRITE_FAILED, e)
                    self.close()
                break
        logger.debug("Writer loop exiting")

    # ========== Reading ==========

    def _read_loop(self) -> None:
        logger.debug("Reader loop starting")
        sock = self._socket
        try:
            while self._running:
                try:
                    chunk = sock.recv(self._read_size)
                except OSError as e:
                    if self._running:
                        self._report_io_error(f"TCP RX error: {e}", ErrorCodes.CONNECTION_LOST, e)
                    break

                if not chunk:
                    self._input_shutdown = True
                    logger.info(f"Peer {self.host}:{self.port} closed the connection")
                    break

                self._stats['bytes_read'] += len(chunk)
                for frame in self._assembler.feed(chunk):
                    self._stats['frames_read'] += 1
                    if self._on_frame:
                        try:
                            self._on_frame(frame)
                        except Exception as e:
                            logger.error(f"Frame handler error: {e}", exc_info=True)
        finally:
            with self._lock:
                self._running = False
            self._write_queue.put(None)
            try:
                sock.close()
            except OSError:
                pass
            logger.debug("Reader loop exiting")
            self._finish()

    def _report_io_error(self, message: str, error_code: int, cause: OSError) -> None:
        error = ConnectionError(message, host=self.host, port=self.port,
                                error_code=error_code, cause=cause)
        self.last_error = error
        logger.error(error.format_log_message())
        self._report_error(message)

    def _report_error(self, message: str) -> None:
        if self._on_error:
            try:
                self._on_error(message)
            except Exception as e:
                logger.error(f"Error handler failed: {e}")

    # ========== Liveness ==========

    def check_alive(self) -> bool:
        """
        Actively check whether the connection still works.

        Shutdown flags are checked first, then a single out-of-band byte is
        sent; a peer that vanished without a clean close makes the send fail
        even though the local socket still reports connected.
        """
        with self._lock:
            sock = self._socket
            if (self._state != SessionState.CONNECTED or sock is None
                    or sock.fileno() == -1):
                return False
            if self._input_shutdown or self._output_shutdown:
                return False

        try:
            sock.send(URGENT_PROBE_BYTE, URGENT_PROBE_FLAGS)
            return True
        except BlockingIOError:
            # send buffer full: the peer is slow, not gone
            return True
        except OSError as e:
            logger.debug(f"Urgent-data probe failed: {e}")
            return False

    def get_stats(self) -> Dict[str, int]:
        """Get session and decoder statistics."""
        stats = self._stats.copy()
        stats.update(self._assembler.get_stats())
        return stats
