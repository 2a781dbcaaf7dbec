from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

from .config import DEFAULT_NAME_PREFIX, settings_from_args

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="linkband-monitor",
        description="Scan for LinkBand headbands over BLE, stream EEG/PPG/ACC and show them in a web dashboard.",
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use the synthetic device service (no BLE hardware required)",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Dashboard bind address (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8050,
        help="Dashboard port (default: 8050)",
    )
    parser.add_argument(
        "--scan-timeout",
        type=float,
        default=10.0,
        help="Seconds a scan runs before stopping",
    )
    parser.add_argument(
        "--name-prefix",
        default=DEFAULT_NAME_PREFIX,
        help=f"Only list devices whose name starts with this prefix (default: {DEFAULT_NAME_PREFIX}; empty lists all)",
    )
    parser.add_argument(
        "--return-to-scanner-on-drop",
        action="store_true",
        help="Go back to the scanner when the connection drops unexpectedly",
    )
    parser.add_argument(
        "--auto-reconnect",
        action="store_true",
        help="Start with auto-reconnect enabled",
    )
    parser.add_argument(
        "--characteristic",
        action="append",
        metavar="KIND=UUID",
        help="Notify characteristic for a sensor, e.g. EEG=<uuid> (repeatable, BLE only)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=[
            "CRITICAL",
            "ERROR",
            "WARNING",
            "INFO",
            "DEBUG",
            "NOTSET",
        ],
        help="Log level (default: WARNING)",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also write logs to this file (default: stderr only)",
    )
    return parser


def configure_logging(level_name: str, log_file: Optional[str] = None) -> None:
    level = getattr(logging, str(level_name).upper(), logging.WARNING)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    file_error: Optional[OSError] = None
    if log_file:
        try:
            handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
        except OSError as e:
            # Keep running with stderr only
            file_error = e
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )
    if file_error is not None:
        logger.warning("Cannot open log file %s: %s", log_file, file_error)


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level, args.log_file)

    try:
        settings = settings_from_args(args)
    except ValueError as e:
        parser.error(str(e))

    from .dashboard import create_app
    from .device_service import DeviceSessionService, MockDeviceSessionService

    service: DeviceSessionService
    if args.mock:
        logger.info("Using the synthetic device service (no BLE device required)")
        service = MockDeviceSessionService(
            scan_timeout=settings.scan_timeout, plot_window=settings.plot_window
        )
    else:
        from .ble_service import BleDeviceSessionService

        if not settings.sensor_characteristics:
            logger.warning(
                "No --characteristic given; the device can be scanned and connected but sensors cannot stream"
            )
        service = BleDeviceSessionService(settings)

    logger.info("Open http://%s:%d in your browser", settings.host, settings.port)
    try:
        create_app(service, settings).run()
    except KeyboardInterrupt:
        logger.info("Shutting down monitor...")
    except Exception as e:
        logger.error("Failed to start monitor: %s", e)
        raise SystemExit(1)
    logger.info("Monitor stopped")
