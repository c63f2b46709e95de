# ============================================================================
# src/locolink/services/__init__.py
"""
Services for locolink.

The Qt status bridge lives in ``status_indicator_service`` and is not
imported here, so headless users do not load PyQt5.
"""

from .configuration_service import ConfigurationService, LinkConfig
from .console_buffer import ConsoleBuffer
from .link_client import LinkClient
from .liveness_monitor import HealthReport, LivenessMonitor
from .reconnect_supervisor import ReconnectSupervisor, TickOutcome

__all__ = [
    'ConfigurationService',
    'LinkConfig',
    'ConsoleBuffer',
    'LinkClient',
    'HealthReport',
    'LivenessMonitor',
    'ReconnectSupervisor',
    'TickOutcome',
]
