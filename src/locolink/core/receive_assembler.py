"""
Receive-side frame assembler.

Turns arbitrarily sized TCP chunks into complete, CRC-checked frames. Torn
reads are buffered until the rest of the frame arrives; noise and corrupt
frames are dropped one byte at a time so a START byte hidden inside bad data
can still be found.

The buffer is a preallocated ``bytearray`` that doubles when it runs out of
room and is compacted in place, so after every drain pass it is either empty
or begins with a START byte followed by an incomplete frame.
"""

import logging
from typing import Dict, List

from .frame_codec import Frame, START_BYTE, decode_one

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 2048


class ReceiveAssembler:
    """
    Growable receive buffer that emits decoded frames.

    Example:
        >>> assembler = ReceiveAssembler()
        >>> assembler.feed(bytes.fromhex("7e0300"))
        []
        >>> assembler.feed(bytes.fromhex("01020a"))
        [Frame(device_id=3, payload=02, crc=0x0A)]
    """

    def __init__(self, initial_capacity: int = DEFAULT_CAPACITY):
        if initial_capacity < 1:
            raise ValueError(f"Capacity must be positive, got {initial_capacity}")
        self._buf = bytearray(initial_capacity)
        self._size = 0

        self._stats = {
            'frames_decoded': 0,
            'bytes_discarded': 0,
            'resyncs': 0,
        }

    @property
    def buffered(self) -> int:
        """Number of bytes currently held."""
        return self._size

    @property
    def capacity(self) -> int:
        """Allocated buffer size."""
        return len(self._buf)

    def pending(self) -> bytes:
        """Copy of the bytes currently held (for diagnostics and tests)."""
        return bytes(self._buf[:self._size])

    def feed(self, chunk: bytes) -> List[Frame]:
        """
        Append a received chunk and drain every complete frame.

        Args:
            chunk: Raw bytes as returned by ``socket.recv``.

        Returns:
            Frames decoded from the buffer, in stream order (possibly empty).
        """
        if chunk:
            self._append(chunk)
        return self._drain()

    def reset(self) -> None:
        """Logically truncate the buffer; capacity is kept."""
        self._size = 0

    def get_stats(self) -> Dict[str, int]:
        """Get decoder statistics."""
        return self._stats.copy()

    def _append(self, chunk: bytes) -> None:
        need = self._size + len(chunk)
        if need > len(self._buf):
            capacity = len(self._buf)
            while capacity < need:
                capacity *= 2
            grown = bytearray(capacity)
            grown[:self._size] = self._buf[:self._size]
            self._buf = grown
            logger.debug(f"Receive buffer grown to {capacity} bytes")
        self._buf[self._size:need] = chunk
        self._size = need

    def _consume(self, n: int) -> None:
        """Drop ``n`` bytes from the front and shift the rest down."""
        if n >= self._size:
            self._size = 0
            return
        remaining = self._size - n
        self._buf[:remaining] = self._buf[n:self._size]
        self._size = remaining

    def _drain(self) -> List[Frame]:
        frames: List[Frame] = []

        while True:
            start = self._buf.find(START_BYTE, 0, self._size)
            if start < 0:
                if self._size:
                    self._stats['bytes_discarded'] += self._size
                self._size = 0
                return frames

            if start > 0:
                self._stats['bytes_discarded'] += start
                self._consume(start)

            result = decode_one(self._buf, 0, self._size)
            if result.consumed == 0:
                # incomplete frame at index 0, wait for more data
                return frames

            if result.frame is None:
                self._stats['resyncs'] += 1
                self._stats['bytes_discarded'] += result.consumed
            else:
                frames.append(result.frame)
                self._stats['frames_decoded'] += 1
            self._consume(result.consumed)
