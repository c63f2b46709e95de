"""
Batched console output.

Telemetry can arrive far faster than a console or text widget can redraw.
ConsoleBuffer queues lines and hands them to a consumer in bounded blocks
from a background timer, so the reader thread never waits on output.
"""

import logging
import threading
from collections import deque
from typing import Callable, Deque, Optional

logger = logging.getLogger(__name__)

MIN_FLUSH_BYTES = 64
DEFAULT_FLUSH_INTERVAL = 0.1


class ConsoleBuffer:
    """
    Line queue flushed in blocks of at most ``max_flush_bytes``.

    A single line longer than the limit is still flushed, on its own.

    Example:
        >>> buffer = ConsoleBuffer(4096, consumer=sys.stdout.write)
        >>> buffer.offer("cmd=0x03 loco=3 state=2\\n")
        >>> buffer.close()
    """

    def __init__(
        self,
        max_flush_bytes: int,
        consumer: Callable[[str], None],
        interval: float = DEFAULT_FLUSH_INTERVAL
    ):
        self.max_flush_bytes = max(MIN_FLUSH_BYTES, max_flush_bytes)
        self.interval = interval
        self._consumer = consumer

        self._lines: Deque[str] = deque()
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = threading.Thread(
            target=self._run,
            name="ConsoleBuffer",
            daemon=True
        )
        self._thread.start()

    def offer(self, line: str) -> None:
        """Queue a line; empty strings are ignored."""
        if not line:
            return
        with self._lock:
            self._lines.append(line)

    def pending(self) -> int:
        with self._lock:
            return len(self._lines)

    def flush(self) -> int:
        """
        Hand one block of queued lines to the consumer.

        Returns:
            Number of lines flushed.
        """
        with self._flush_lock:
            with self._lock:
                if not self._lines:
                    return 0
                parts = [self._lines.popleft()]
                size = len(parts[0])
                while self._lines and size + len(self._lines[0]) <= self.max_flush_bytes:
                    line = self._lines.popleft()
                    parts.append(line)
                    size += len(line)

            try:
                self._consumer("".join(parts))
            except Exception as e:
                logger.error(f"Console consumer error: {e}", exc_info=True)
            return len(parts)

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.flush()

    def close(self, timeout: float = 1.0) -> None:
        """Stop the timer and flush everything still queued."""
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        while self.flush():
            pass
