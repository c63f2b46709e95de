"""
Error hierarchy for the locolink client.

Errors are raised or recorded at internal seams (session open, session I/O,
frame building, configuration loading). The link client turns them into
error callbacks, so none reach external collaborators as exceptions.

Error Code Ranges:
- 1000-1999: Connection errors
- 2000-2999: Protocol/framing errors
- 6000-6999: Configuration errors
- 9000-9999: Unknown errors
"""

from typing import Optional, Dict, Any, List
from datetime import datetime
import traceback


class LocoLinkError(Exception):
    """
    Base exception for all locolink errors.

    Provides structured error information with context tracking.
    """

    DEFAULT_CODE = 9000

    def __init__(
        self,
        message: str,
        error_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        """
        Initialize a locolink error.

        Args:
            message: Human-readable error description
            error_code: Numeric error code for categorization
            context: Additional context information (host, port, ...)
            cause: Original exception if this wraps another error
            suggestions: List of possible solutions or next steps
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.DEFAULT_CODE
        self.context = context or {}
        self.cause = cause
        self.suggestions = suggestions or []
        self.timestamp = datetime.now()

        self.stack_trace = traceback.format_exc() if cause else None

        if cause:
            self.context['original_error'] = str(cause)
            self.context['original_type'] = type(cause).__name__

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            'error_type': self.__class__.__name__,
            'message': self.message,
            'code': self.error_code,
            'context': self.context,
            'suggestions': self.suggestions,
            'timestamp': self.timestamp.isoformat(),
            'cause': str(self.cause) if self.cause else None,
        }

    def format_user_message(self) -> str:
        """Format error for user display (without technical details)."""
        msg = f"{self.message}"
        if self.suggestions:
            msg += "\n\nSuggestions:"
            for i, suggestion in enumerate(self.suggestions, 1):
                msg += f"\n  {i}. {suggestion}"
        return msg

    def format_log_message(self) -> str:
        """Format error for logging (with all details)."""
        parts = [
            f"[{self.error_code}] {self.__class__.__name__}: {self.message}"
        ]

        if self.context:
            parts.append(f"Context: {self.context}")

        if self.cause:
            parts.append(f"Caused by: {self.cause}")

        return " | ".join(parts)


class ConnectionError(LocoLinkError):
    """Errors related to sockets: connect failures, lost peers, I/O errors."""
    DEFAULT_CODE = 1001

    def __init__(self, message: str, host: Optional[str] = None,
                 port: Optional[int] = None, **kwargs):
        if 'context' not in kwargs or kwargs['context'] is None:
            kwargs['context'] = {}
        kwargs['context']['category'] = 'CONNECTION'
        if host is not None:
            kwargs['context']['host'] = host
        if port is not None:
            kwargs['context']['port'] = port
        super().__init__(message, **kwargs)


class ProtocolError(LocoLinkError):
    """Errors related to the wire format (frame building and parsing)."""
    DEFAULT_CODE = 2001

    def __init__(self, message: str, device_id: Optional[int] = None, **kwargs):
        if 'context' not in kwargs or kwargs['context'] is None:
            kwargs['context'] = {}
        kwargs['context']['category'] = 'PROTOCOL'
        if device_id is not None:
            kwargs['context']['device_id'] = device_id
        super().__init__(message, **kwargs)


class ConfigurationError(LocoLinkError):
    """Errors related to loading or validating configuration."""
    DEFAULT_CODE = 6001

    def __init__(self, message: str, setting_name: Optional[str] = None, **kwargs):
        if 'context' not in kwargs or kwargs['context'] is None:
            kwargs['context'] = {}
        kwargs['context']['category'] = 'CONFIGURATION'
        if setting_name:
            kwargs['context']['setting'] = setting_name
        super().__init__(message, **kwargs)


class ErrorCodes:
    """Standard error codes for common error scenarios."""

    # Connection errors (1000-1999)
    CONNECTION_REFUSED = 1001
    CONNECTION_TIMEOUT = 1002
    CONNECTION_LOST = 1003
    SOCKET_ERROR = 1004
    WRITE_FAILED = 1005

    # Protocol errors (2000-2999)
    PAYLOAD_TOO_LARGE = 2001

    # Configuration errors (6000-6999)
    CONFIG_INVALID = 6002

    UNKNOWN_ERROR = 9000
