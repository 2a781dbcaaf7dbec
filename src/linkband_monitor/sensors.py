"""Domain types shared by the session core, the device services and the UI.

The LinkBand headband exposes three sensor streams. Each stream is identified
by a :class:`SensorKind`, and every received reading is carried as an
immutable :class:`SensorSample` whose ``values`` follow the channel order in
:data:`CHANNELS`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class SensorKind(str, Enum):
    """Sensors available on the headband."""

    EEG = "EEG"
    PPG = "PPG"
    ACC = "ACC"

    @classmethod
    def parse(cls, text: str) -> "SensorKind":
        """Parse a sensor name case-insensitively.

        Raises:
            ValueError: If ``text`` does not name a known sensor.
        """
        try:
            return cls(text.strip().upper())
        except ValueError:
            names = ", ".join(k.value for k in cls)
            raise ValueError(
                f"Unknown sensor '{text}' (expected one of: {names})"
            ) from None


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    SCANNING = "scanning"
    CONNECTED = "connected"


class ActiveScreen(str, Enum):
    SCANNER = "scanner"
    DATA_VIEW = "data"


# Channel layout of SensorSample.values per sensor
CHANNELS: dict[SensorKind, tuple[str, ...]] = {
    SensorKind.EEG: ("ch1", "ch2", "lead_off"),
    SensorKind.PPG: ("red", "ir"),
    SensorKind.ACC: ("x", "y", "z"),
}

# Nominal device sampling rates
SAMPLE_RATES_HZ: dict[SensorKind, int] = {
    SensorKind.EEG: 250,
    SensorKind.PPG: 50,
    SensorKind.ACC: 25,
}


@dataclass(frozen=True)
class DeviceDescriptor:
    """A device found during a scan.

    Attributes:
        address: BLE address used to connect.
        name: Advertised name, or None when the device does not advertise one.
    """

    address: str
    name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or "Unknown device"


@dataclass(frozen=True)
class SensorSample:
    """One timestamped reading from a sensor stream.

    Attributes:
        kind: Sensor that produced the reading.
        timestamp_ms: Wall-clock time of the reading in milliseconds.
        values: Channel values in the order given by ``CHANNELS[kind]``.
            Adapters that do not decode payloads store raw bytes as ints.
    """

    kind: SensorKind
    timestamp_ms: int
    values: tuple[float, ...]
