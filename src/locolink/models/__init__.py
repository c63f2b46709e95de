# ============================================================================
# src/locolink/models/__init__.py
"""
Data models for locolink.

This package contains the connection state shared between the client and
its background loops.
"""

from .connection import (
    ConnectionState,
    TargetEndpoint,
    AutoReconnectMode,
    LinkStatus,
    LinkStatusModel,
    is_valid_endpoint,
)

__all__ = [
    'ConnectionState',
    'TargetEndpoint',
    'AutoReconnectMode',
    'LinkStatus',
    'LinkStatusModel',
    'is_valid_endpoint',
]
