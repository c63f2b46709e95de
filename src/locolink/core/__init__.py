"""
Core layer for the hardware link.

This package contains the wire codec, the receive-side frame assembler,
the socket session and ordered event delivery.
"""

from .frame_codec import (
    Frame,
    DecodeResult,
    crc8,
    encode,
    encode_control,
    decode_one,
    frame_to_hex,
    format_telemetry_line,
    parse_telemetry_line,
)
from .receive_assembler import ReceiveAssembler
from .connection_session import ConnectionSession, SessionState
from .events import EventDispatcher, LinkEvent

__all__ = [
    'Frame',
    'DecodeResult',
    'crc8',
    'encode',
    'encode_control',
    'decode_one',
    'frame_to_hex',
    'format_telemetry_line',
    'parse_telemetry_line',
    'ReceiveAssembler',
    'ConnectionSession',
    'SessionState',
    'EventDispatcher',
    'LinkEvent',
]
