"""
Frame encoding and decoding for the locolink wire protocol.

Frame layout::

    +-------+-----------+--------+--------+-------------+-------+
    | START | device id | len hi | len lo |   payload   | CRC-8 |
    | 0x7E  |  1 byte   |      2 bytes BE | 0..4096 B   | 1 B   |
    +-------+-----------+--------+--------+-------------+-------+

- CRC-8: polynomial 0x31, MSB-first, initial value 0x00, no final xor,
  computed over device id + length + payload (START and CRC excluded).
  This has to match the firmware on the peer bit for bit.
- Command frames carry a single state byte (1..6) for a device (1..8).
"""

import logging
import re
import struct
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple, Union

logger = logging.getLogger(__name__)

START_BYTE = 0x7E
HEADER_SIZE = 4            # START + device id + 2 length bytes
CRC_SIZE = 1
MIN_FRAME_SIZE = HEADER_SIZE + CRC_SIZE
MAX_PAYLOAD_SIZE = 4096
MAX_FRAME_SIZE = MIN_FRAME_SIZE + MAX_PAYLOAD_SIZE

CRC8_POLYNOMIAL = 0x31

DEVICE_ID_MIN = 1
DEVICE_ID_MAX = 8
STATE_MIN = 1
STATE_MAX = 6

# device id (uint8) + payload length (uint16, big-endian)
_HEADER_STRUCT = struct.Struct(">BH")

_TELEMETRY_PATTERN = re.compile(r"loco=(\d+)\s+state=(\d+)")


@dataclass(frozen=True)
class Frame:
    """A decoded protocol frame."""

    device_id: int
    payload: bytes
    crc: int = 0

    @property
    def state(self) -> Optional[int]:
        """State byte of a command/telemetry frame, None for other payloads."""
        if len(self.payload) == 1:
            return self.payload[0]
        return None

    def __repr__(self) -> str:
        return (
            f"Frame(device_id={self.device_id}, "
            f"payload={self.payload.hex(' ') if self.payload else '(empty)'}, "
            f"crc=0x{self.crc:02X})"
        )


@dataclass(frozen=True)
class DecodeResult:
    """
    Outcome of a single decode attempt.

    Attributes:
        consumed: Bytes the caller should advance past, whether or not a
            frame was produced. 0 means the candidate frame is incomplete.
        frame: The decoded frame, or None.
    """

    consumed: int
    frame: Optional[Frame] = None


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, int(value)))


def crc8(data: Union[bytes, bytearray, memoryview], start: int = 0,
         end: Optional[int] = None) -> int:
    """
    Compute the CRC-8 (poly 0x31, init 0x00, MSB-first) of ``data[start:end]``.

    Args:
        data: Bytes to checksum.
        start: First index to include.
        end: One past the last index to include (defaults to ``len(data)``).

    Returns:
        CRC value in range 0-255.
    """
    if end is None:
        end = len(data)
    crc = 0x00
    for i in range(start, end):
        crc ^= data[i]
        for _ in range(8):
            if crc & 0x80:
                crc = ((crc << 1) ^ CRC8_POLYNOMIAL) & 0xFF
            else:
                crc = (crc << 1) & 0xFF
    return crc


def _payload_bytes(payload: Union[bytes, bytearray, Iterable[int]]) -> bytes:
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return bytes(payload)
    return bytes(_clamp(value, 0, 0xFF) for value in payload)


def encode(device_id: int, payload: Union[bytes, bytearray, Iterable[int]] = b"") -> bytes:
    """
    Build a complete wire frame.

    Out-of-range numeric input is clamped rather than rejected: the device id
    into 1..8 and integer payload values into 0..255.

    Args:
        device_id: Target device (clamped into 1..8).
        payload: Payload bytes, or an iterable of integers.

    Returns:
        ``5 + len(payload)`` bytes ready to write to the socket.

    Raises:
        ValueError: If the payload is longer than MAX_PAYLOAD_SIZE.
    """
    device = _clamp(device_id, DEVICE_ID_MIN, DEVICE_ID_MAX)
    body = _payload_bytes(payload)
    if len(body) > MAX_PAYLOAD_SIZE:
        raise ValueError(
            f"Payload must be at most {MAX_PAYLOAD_SIZE} bytes, got {len(body)}"
        )

    crc_span = _HEADER_STRUCT.pack(device, len(body)) + body
    return bytes([START_BYTE]) + crc_span + bytes([crc8(crc_span)])


def encode_control(device_id: int, state: int) -> bytes:
    """
    Build a control frame: one state byte (clamped into 1..6) for a device.

    Example:
        >>> encode_control(1, 5).hex(' ')
        '7e 01 00 01 05 9a'
    """
    return encode(device_id, bytes([_clamp(state, STATE_MIN, STATE_MAX)]))


def decode_one(buffer: Union[bytes, bytearray, memoryview], offset: int = 0,
               end: Optional[int] = None) -> DecodeResult:
    """
    Try to parse exactly one frame starting at ``offset``.

    Args:
        buffer: Byte buffer holding received data.
        offset: Index where parsing starts.
        end: One past the last valid byte of ``buffer`` (defaults to its length).

    Returns:
        DecodeResult. ``consumed`` covers leading noise up to the next START
        byte, a single byte for a corrupt length or CRC (resynchronization),
        or the whole frame on success. It is 0 when more data is needed.
    """
    if end is None:
        end = len(buffer)

    i = offset
    while i < end and buffer[i] != START_BYTE:
        i += 1
    if i > offset:
        # noise before the next START (or nothing useful at all)
        return DecodeResult(consumed=i - offset)

    available = end - offset
    if available < MIN_FRAME_SIZE:
        return DecodeResult(consumed=0)

    device_id, length = _HEADER_STRUCT.unpack_from(buffer, offset + 1)
    if length > MAX_PAYLOAD_SIZE:
        logger.debug(f"Declared length {length} exceeds {MAX_PAYLOAD_SIZE}, resyncing")
        return DecodeResult(consumed=1)

    total = MIN_FRAME_SIZE + length
    if available < total:
        return DecodeResult(consumed=0)

    expected = buffer[offset + total - 1]
    actual = crc8(buffer, offset + 1, offset + HEADER_SIZE + length)
    if actual != expected:
        logger.debug(f"CRC mismatch (got 0x{actual:02X}, frame says 0x{expected:02X}), resyncing")
        return DecodeResult(consumed=1)

    payload = bytes(buffer[offset + HEADER_SIZE:offset + HEADER_SIZE + length])
    return DecodeResult(
        consumed=total,
        frame=Frame(device_id=device_id, payload=payload, crc=expected)
    )


def frame_to_hex(data: Union[bytes, bytearray]) -> str:
    """Space separated upper-case hex dump, used in log messages."""
    return " ".join(f"{b:02X}" for b in data)


def format_telemetry_line(frame: Frame) -> str:
    """
    Render a decoded frame as one newline-terminated telemetry line.

    Example:
        >>> format_telemetry_line(Frame(device_id=3, payload=b"\\x02"))
        'cmd=0x03 loco=3 state=2\\n'
    """
    if frame.state is not None:
        return f"cmd=0x{frame.device_id:02X} loco={frame.device_id} state={frame.state}\n"
    return (
        f"cmd=0x{frame.device_id:02X} len={len(frame.payload)} "
        f"data={frame_to_hex(frame.payload)}\n"
    )


def parse_telemetry_line(line: str) -> Optional[Tuple[int, int]]:
    """
    Extract ``(device_id, state)`` from a telemetry line.

    Returns:
        The pair, or None if the line is not a state line or the state is
        outside 1..6.
    """
    if not line:
        return None
    match = _TELEMETRY_PATTERN.search(line)
    if match is None:
        return None
    device_id, state = int(match.group(1)), int(match.group(2))
    if device_id <= 0 or not (STATE_MIN <= state <= STATE_MAX):
        return None
    return device_id, state
