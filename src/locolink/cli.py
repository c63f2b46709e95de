"""
Command-Line Interface - Argument Parsing and Entry Point

This module provides a headless link monitor. It handles:
- Command-line argument parsing
- Argument validation
- Loading the YAML configuration and applying overrides
- Running the client with auto-connect and printing telemetry

Usage:
    python -m locolink --host 192.168.2.6 --port 9000 --device 3
    python -m locolink --device 3 --send 2 --duration 5
    python -m locolink --help
"""

import sys
import argparse
import logging
import threading
from pathlib import Path
from typing import List, Optional

from locolink.core.errors import LocoLinkError
from locolink.core.frame_codec import (
    DEVICE_ID_MAX,
    DEVICE_ID_MIN,
    STATE_MAX,
    STATE_MIN,
    Frame,
    format_telemetry_line,
)
from locolink.services.configuration_service import ConfigurationService, LinkConfig
from locolink.services.console_buffer import ConsoleBuffer
from locolink.services.link_client import STATUS_CONNECTED, LinkClient

CONSOLE_FLUSH_BYTES = 4096


def parse_args(args: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        args: List of arguments to parse. If None, uses sys.argv[1:]

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="locolink",
        description="Headless monitor for the locolink hardware link",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s
  %(prog)s --host 192.168.2.6 --port 9000 --device 3
  %(prog)s --config link.yaml --send 2 --duration 5
        """
    )

    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Hardware host (overrides the configuration file)"
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Hardware TCP port (overrides the configuration file)"
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="YAML configuration file"
    )

    parser.add_argument(
        "--device",
        type=int,
        default=None,
        help=f"Device whose telemetry is printed ({DEVICE_ID_MIN}-{DEVICE_ID_MAX})"
    )

    parser.add_argument(
        "--send",
        type=int,
        default=None,
        metavar="STATE",
        help=f"Send this control state ({STATE_MIN}-{STATE_MAX}) to the device once connected"
    )

    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Stop after this many seconds (default: run until interrupted)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set logging level (default: INFO)"
    )

    return parser.parse_args(args)


def validate_args(args: argparse.Namespace) -> bool:
    """Validate parsed command-line arguments.

    Args:
        args: Parsed arguments from parse_args()

    Returns:
        True if arguments are valid, False otherwise
    """
    if args.port is not None and not (1 <= args.port <= 65535):
        print(f"Error: Port must be between 1 and 65535, got {args.port}")
        return False

    if args.host is not None and args.host.strip() == "":
        print("Error: Host cannot be empty if specified")
        return False

    if args.device is not None and not (DEVICE_ID_MIN <= args.device <= DEVICE_ID_MAX):
        print(f"Error: Device must be between {DEVICE_ID_MIN} and {DEVICE_ID_MAX}, got {args.device}")
        return False

    if args.send is not None and not (STATE_MIN <= args.send <= STATE_MAX):
        print(f"Error: State must be between {STATE_MIN} and {STATE_MAX}, got {args.send}")
        return False

    if args.duration is not None and args.duration <= 0:
        print(f"Error: Duration must be positive, got {args.duration}")
        return False

    if args.config:
        config_path = Path(args.config)
        if not config_path.is_file():
            print(f"Error: Configuration file not found: {args.config}")
            return False

    return True


def setup_logging(level: str):
    """Configure application logging.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    numeric_level = getattr(logging, level.upper(), None)

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def build_config(args: argparse.Namespace) -> LinkConfig:
    """Load the configuration file and apply command-line overrides.

    Raises:
        ConfigurationError: If the file is invalid
    """
    config = ConfigurationService().load(args.config)
    if args.host is not None:
        config.host = args.host.strip()
    if args.port is not None:
        config.port = args.port
    if args.device is not None:
        config.device_id = args.device
    return config


def _write_console(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


class LinkMonitor:
    """
    Headless monitor: prints the selected device's telemetry and
    optionally sends one control state on every (re)connect.
    """

    def __init__(self, config: LinkConfig, send_state: Optional[int] = None,
                 console: Optional[ConsoleBuffer] = None):
        self.logger = logging.getLogger(__name__)
        self.config = config
        self.send_state = send_state
        self.console = console or ConsoleBuffer(CONSOLE_FLUSH_BYTES, _write_console)
        self.client = LinkClient(
            config=config,
            on_frame=self.on_frame,
            on_error=self.on_error,
            on_status_changed=self.on_status_changed
        )

    def on_frame(self, frame: Frame) -> None:
        if frame.device_id == self.config.device_id:
            self.console.offer(format_telemetry_line(frame))

    def on_error(self, message: str) -> None:
        self.logger.warning(f"Link error: {message}")

    def on_status_changed(self, status: str) -> None:
        self.logger.info(f"Link status: {status}")
        if status == STATUS_CONNECTED and self.send_state is not None:
            self.client.send_control(self.config.device_id, self.send_state)

    def run(self, duration: Optional[float] = None,
            stop_event: Optional[threading.Event] = None) -> None:
        """Run until the duration elapses or stop_event is set."""
        stop_event = stop_event or threading.Event()
        self.client.start_monitoring()
        if self.config.auto_connect:
            self.client.enable_auto_connect(self.config.host, self.config.port)
        else:
            self.client.connect(self.config.host, self.config.port)
        try:
            stop_event.wait(duration)
        finally:
            self.client.shutdown()
            self.console.close()


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point for the monitor.

    Args:
        args: Command-line arguments. If None, uses sys.argv[1:]

    Returns:
        Exit code (0 = success, 1 = error)
    """
    parsed_args = parse_args(args)

    setup_logging(parsed_args.log_level)

    logger = logging.getLogger(__name__)
    logger.debug(f"Arguments: host={parsed_args.host}, port={parsed_args.port}, "
                 f"device={parsed_args.device}")

    if not validate_args(parsed_args):
        return 1

    try:
        config = build_config(parsed_args)
    except LocoLinkError as e:
        print(e.format_user_message())
        return 1

    valid, errors = config.validate()
    if not valid:
        for error in errors:
            print(f"Error: {error}")
        return 1

    logger.info(f"Monitoring device {config.device_id} at {config.host}:{config.port}")
    monitor = LinkMonitor(config, send_state=parsed_args.send)
    try:
        monitor.run(parsed_args.duration)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
