# src/locolink/services/configuration_service.py
"""
Configuration service for link settings.

Settings are read from a YAML file; every key is optional and falls back
to the defaults below. Persisting user preferences is left to the
application that embeds the client.

Example file::

    host: 192.168.2.6
    port: 9000
    connect_timeout: 2.0
    reconnect_interval: 1.0
    liveness_interval: 1.0
    probe_timeout_ms: 600
    device_id: 1
"""
import logging
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from locolink.core.errors import ConfigurationError, ErrorCodes
from locolink.models.connection import is_valid_endpoint

DEFAULT_HOST = "192.168.2.6"
DEFAULT_PORT = 9000


@dataclass
class LinkConfig:
    """
    Settings for the link client and its background loops.

    Attributes:
        host: Hardware host name or IP address
        port: Hardware TCP port (1-65535)
        connect_timeout: Connect timeout for a session, in seconds
        reconnect_interval: Period of the reconnect tick, in seconds
        liveness_interval: Period of the liveness check, in seconds
        probe_timeout_ms: Timeout of the reachability probe, in milliseconds
        read_chunk_size: Maximum bytes per socket read
        auto_connect: Start the reconnect loop on startup
        device_id: Device whose telemetry is shown by default (1-8)
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    connect_timeout: float = 2.0
    reconnect_interval: float = 1.0
    liveness_interval: float = 1.0
    probe_timeout_ms: int = 600
    read_chunk_size: int = 512
    auto_connect: bool = True
    device_id: int = 1

    def validate(self) -> Tuple[bool, List[str]]:
        """
        Validate the configuration.

        Returns:
            Tuple of (is_valid, list_of_error_messages)
        """
        errors = []

        if not is_valid_endpoint(self.host, self.port):
            errors.append(f"Invalid endpoint: {self.host!r}:{self.port}")

        if self.connect_timeout <= 0:
            errors.append(f"connect_timeout must be positive: {self.connect_timeout}")

        if self.reconnect_interval <= 0:
            errors.append(f"reconnect_interval must be positive: {self.reconnect_interval}")

        if self.liveness_interval <= 0:
            errors.append(f"liveness_interval must be positive: {self.liveness_interval}")

        if self.probe_timeout_ms <= 0:
            errors.append(f"probe_timeout_ms must be positive: {self.probe_timeout_ms}")

        if self.read_chunk_size <= 0:
            errors.append(f"read_chunk_size must be positive: {self.read_chunk_size}")

        if not (1 <= self.device_id <= 8):
            errors.append(f"device_id out of range (1-8): {self.device_id}")

        return (len(errors) == 0, errors)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ConfigurationService:
    """
    Loads LinkConfig objects from YAML files and dictionaries.

    Attributes:
        logger: Logger instance
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def from_dict(self, data: Optional[Dict[str, Any]]) -> LinkConfig:
        """
        Build a LinkConfig from a mapping, ignoring unknown keys.

        Raises:
            ConfigurationError: If a value has the wrong type
        """
        if data is None:
            return LinkConfig()
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration must be a mapping, got {type(data).__name__}",
                error_code=ErrorCodes.CONFIG_INVALID
            )

        defaults = {f.name: f.default for f in fields(LinkConfig)}
        values: Dict[str, Any] = {}
        for key, value in data.items():
            if key not in defaults:
                self.logger.warning(f"Ignoring unknown setting '{key}'")
                continue
            values[key] = self._coerce(key, value, defaults[key])

        return LinkConfig(**values)

    def _coerce(self, key: str, value: Any, default: Any) -> Any:
        expected = type(default)
        try:
            if expected is bool:
                if isinstance(value, bool):
                    return value
                raise TypeError(f"expected true/false, got {value!r}")
            if expected is int and isinstance(value, bool):
                raise TypeError(f"expected an integer, got {value!r}")
            return expected(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid value for '{key}': {value!r}",
                setting_name=key,
                error_code=ErrorCodes.CONFIG_INVALID,
                cause=e
            ) from e

    def load(self, path: Union[str, Path, None]) -> LinkConfig:
        """
        Load configuration from a YAML file.

        A missing file yields the defaults.

        Raises:
            ConfigurationError: If the file cannot be parsed
        """
        if path is None:
            return LinkConfig()

        config_path = Path(path)
        if not config_path.exists():
            self.logger.info(f"No configuration file at {config_path}, using defaults")
            return LinkConfig()

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Failed to read configuration {config_path}: {e}",
                error_code=ErrorCodes.CONFIG_INVALID,
                cause=e,
                suggestions=["Check the YAML syntax of the configuration file"]
            ) from e

        config = self.from_dict(data)
        self.logger.info(f"Loaded configuration from {config_path}")
        return config
