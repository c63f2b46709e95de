# locolink package
"""
Resilient client for a framed serial-over-TCP hardware link.

Typical use::

    from locolink import LinkClient

    client = LinkClient(on_telemetry_line=print)
    client.enable_auto_connect("192.168.2.6", 9000)
"""

__version__ = "0.3.0"

from .core.errors import LocoLinkError
from .core.events import EventDispatcher, LinkEvent
from .core.frame_codec import Frame, encode, encode_control
from .services.configuration_service import ConfigurationService, LinkConfig
from .services.link_client import LinkClient

__all__ = [
    "LocoLinkError",
    "EventDispatcher",
    "LinkEvent",
    "Frame",
    "encode",
    "encode_control",
    "ConfigurationService",
    "LinkConfig",
    "LinkClient",
]
