#!/usr/bin/env python3
"""
Rover Ground Station - Main Entry Point

Receives rover telemetry over an RFM69HCW radio bonnet, acknowledges it,
and uplinks queued command sequences when the rover is ready.
"""

import argparse
import logging
import os
import signal
import sys

from rover_gs import __version__
from rover_gs.common.errors import ConfigError
from rover_gs.ground.config import GroundConfig
from rover_gs.ground.station import GroundStation

logger = logging.getLogger(__name__)


def setup_logging(log_path: str, level: int = logging.INFO, name: str = "rover-gs"):
    """Setup logging configuration"""
    os.makedirs(log_path, exist_ok=True)

    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    console_formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    log_file = os.path.join(log_path, f"{name}.log")
    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(file_formatter)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(console_formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    # Reduce noise from libraries
    logging.getLogger('werkzeug').setLevel(logging.WARNING)
    logging.getLogger('engineio').setLevel(logging.WARNING)
    logging.getLogger('socketio').setLevel(logging.WARNING)
    logging.getLogger('PIL').setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rover-gs",
        description="Rover Ground Station",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="Enable simulation mode (no real radio hardware)"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )
    parser.add_argument(
        "--callsign",
        type=str,
        default=None,
        help="Override station callsign"
    )
    parser.add_argument(
        "--frequency",
        type=float,
        default=None,
        help="Override frequency (MHz)"
    )
    parser.add_argument(
        "--encryption-key",
        type=str,
        default=None,
        help="AES key shared with the rover (32 hex characters)"
    )
    parser.add_argument(
        "--web-port",
        type=int,
        default=None,
        help="Override web interface port"
    )
    parser.add_argument(
        "--no-web",
        action="store_true",
        help="Disable web interface"
    )
    parser.add_argument(
        "--no-display",
        action="store_true",
        help="Disable the OLED display"
    )
    parser.add_argument(
        "--data-path",
        type=str,
        default=None,
        help="Override data storage path"
    )
    return parser


def apply_args(config: GroundConfig, args: argparse.Namespace) -> GroundConfig:
    """Apply command line overrides to config"""
    if args.callsign:
        config.callsign = args.callsign
    if args.frequency:
        config.frequency_mhz = args.frequency
    if args.encryption_key:
        config.encryption_key = args.encryption_key
    if args.web_port:
        config.web_port = args.web_port
    if args.no_web:
        config.enable_web = False
    if args.no_display:
        config.display_enabled = False
    if args.data_path:
        config.set_data_path(args.data_path)
    if args.simulate:
        config.simulate_radio = True

    # Fail before touching hardware
    config.encryption_key_bytes
    return config


def main(argv=None):
    """Main entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = apply_args(GroundConfig.from_env(data_path=args.data_path), args)
    except ConfigError as e:
        parser.error(str(e))
    except OSError as e:
        parser.error(f"Cannot create data directory: {e}")

    log_level = getattr(logging, args.log_level.upper())
    if config.debug_mode:
        log_level = logging.DEBUG
    setup_logging(config.log_path, log_level, "rover-gs")

    station = GroundStation(config, simulate=config.simulate_radio)

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}")
        station.request_shutdown()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    station.start()
    return 0


if __name__ == "__main__":
    sys.exit(main())
