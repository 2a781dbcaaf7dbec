"""Runtime settings for the monitor.

All tunables live in one frozen :class:`Settings` instance. The CLI builds it
from command-line arguments with :func:`settings_from_args`; tests construct
it directly with the fields they care about.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .sensors import SensorKind

# Standard GATT Battery Level characteristic (0x2A19)
BATTERY_LEVEL_CHAR = "00002a19-0000-1000-8000-00805f9b34fb"

DEFAULT_NAME_PREFIX = "LinkBand"


@dataclass(frozen=True)
class Settings:
    """Monitor configuration.

    Attributes:
        scan_timeout: Seconds a scan runs before stopping on its own.
        connect_timeout: Seconds allowed for a BLE connection attempt.
        name_prefix: Only list scanned devices whose name starts with this
            prefix. None lists every device seen.
        return_to_scanner_on_drop: When True, an unsolicited disconnect while
            the data screen is shown navigates back to the scanner. The
            default keeps the data screen, matching the mobile app.
        auto_reconnect: Initial state of the auto-reconnect toggle.
        reconnect_max_retries: Reconnection attempts after an unsolicited drop.
        reconnect_delay: Initial delay between reconnection attempts.
        reconnect_backoff: Multiplier applied to the delay after each attempt.
        indicator_interval: Tick period of the "pending" indicator, seconds.
        sample_window: Recent samples kept per sensor for text display.
        plot_window: Recent samples kept per sensor by the device service
            and drawn in the plots.
        sensor_characteristics: Notify characteristic UUID per sensor, used by
            the BLE adapter. Sensors without an entry cannot be started.
        command_timeout: Seconds a UI thread waits for a session command.
        update_interval_ms: Dashboard refresh interval.
        host: Dashboard bind address.
        port: Dashboard port.
    """

    scan_timeout: float = 10.0
    connect_timeout: float = 15.0
    name_prefix: Optional[str] = None
    return_to_scanner_on_drop: bool = False
    auto_reconnect: bool = False
    reconnect_max_retries: int = 5
    reconnect_delay: float = 3.0
    reconnect_backoff: float = 1.5
    indicator_interval: float = 0.5
    sample_window: int = 3
    plot_window: int = 250
    sensor_characteristics: dict[SensorKind, str] = field(default_factory=dict)
    command_timeout: float = 5.0
    update_interval_ms: int = 200
    host: str = "127.0.0.1"
    port: int = 8050

    def __post_init__(self) -> None:
        if self.sample_window < 1:
            raise ValueError("sample_window must be >= 1")
        if self.plot_window < self.sample_window:
            raise ValueError("plot_window must be >= sample_window")
        if self.indicator_interval <= 0:
            raise ValueError("indicator_interval must be positive")
        if self.reconnect_backoff < 1.0:
            raise ValueError("reconnect_backoff must be >= 1.0")


def parse_characteristics(items: Iterable[str]) -> dict[SensorKind, str]:
    """Parse ``KIND=UUID`` pairs into a characteristic map.

    Raises:
        ValueError: On a malformed pair or an unknown sensor name.
    """
    result: dict[SensorKind, str] = {}
    for item in items:
        kind_text, sep, uuid = item.partition("=")
        if not sep or not uuid.strip():
            raise ValueError(f"Expected KIND=UUID, got '{item}'")
        result[SensorKind.parse(kind_text)] = uuid.strip().lower()
    return result


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Build :class:`Settings` from parsed CLI arguments."""
    return Settings(
        scan_timeout=args.scan_timeout,
        name_prefix=args.name_prefix or None,
        return_to_scanner_on_drop=args.return_to_scanner_on_drop,
        auto_reconnect=args.auto_reconnect,
        sensor_characteristics=parse_characteristics(args.characteristic or []),
        host=args.host,
        port=args.port,
    )
