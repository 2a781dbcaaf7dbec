"""Pure projections over session state.

Everything here is a plain function of its arguments, so UI predicates and
labels can be tested without a running session or a browser.
"""

from __future__ import annotations

from typing import Optional

from .sensors import (
    CHANNELS,
    SAMPLE_RATES_HZ,
    ConnectionState,
    SensorKind,
    SensorSample,
)
from .store import SessionSnapshot


def connection_state(connected: bool, scanning: bool) -> ConnectionState:
    """Connected wins over scanning."""
    if connected:
        return ConnectionState.CONNECTED
    if scanning:
        return ConnectionState.SCANNING
    return ConnectionState.DISCONNECTED


def pending_activation(
    kind: SensorKind,
    *,
    selected: frozenset[SensorKind],
    started: frozenset[SensorKind],
    activation_requested: bool,
    collection_active: bool,
) -> bool:
    """Whether ``kind`` is selected but not yet part of the running collection."""
    return (
        (activation_requested or collection_active)
        and kind in selected
        and kind not in started
    )


def is_pending_activation(snapshot: SessionSnapshot, kind: SensorKind) -> bool:
    return pending_activation(
        kind,
        selected=snapshot.selected_sensors,
        started=snapshot.started_sensors,
        activation_requested=snapshot.activation_requested,
        collection_active=snapshot.collection_active,
    )


def pending_sensors(snapshot: SessionSnapshot) -> frozenset[SensorKind]:
    return frozenset(k for k in SensorKind if is_pending_activation(snapshot, k))


def can_record(snapshot: SessionSnapshot) -> bool:
    """Recording may only be requested while connected and collecting."""
    return snapshot.connected and snapshot.collection_active


def can_start_sensors(snapshot: SessionSnapshot) -> bool:
    return bool(snapshot.selected_sensors)


# ----- labels -----


def connection_status_text(snapshot: SessionSnapshot) -> str:
    state = connection_state(snapshot.connected, snapshot.scanning)
    label = {
        ConnectionState.CONNECTED: "Connected",
        ConnectionState.SCANNING: "Scanning",
        ConnectionState.DISCONNECTED: "Disconnected",
    }[state]
    if state is ConnectionState.CONNECTED and snapshot.connected_device_name:
        return f"{snapshot.connected_device_name} {label}"
    return label


def data_status_text(snapshot: SessionSnapshot) -> str:
    if snapshot.collection_active:
        return "Receiving data"
    if snapshot.selected_sensors:
        return "Sensors selected"
    return "No data"


def recording_status_text(snapshot: SessionSnapshot) -> str:
    return "Recording" if snapshot.recording else "Not recording"


def battery_tier(level: Optional[int]) -> Optional[str]:
    """Map a battery percentage to ``"ok"``, ``"low"`` or ``"critical"``."""
    if level is None:
        return None
    if level > 50:
        return "ok"
    if level > 20:
        return "low"
    return "critical"


def pending_label(dots: int) -> str:
    return "Receiving" + "." * max(1, min(3, dots))


def sampling_rate_label(kind: SensorKind) -> str:
    return f"{kind.value} ({SAMPLE_RATES_HZ[kind]}Hz)"


def format_sample(sample: SensorSample) -> str:
    """One-line text rendering of a sample."""
    parts = [f"timestamp: {sample.timestamp_ms}"]
    names = CHANNELS[sample.kind]
    if len(sample.values) != len(names):
        # Undecoded payload
        parts.append("raw: " + " ".join(f"{int(v):02X}" for v in sample.values))
        return ", ".join(parts)
    for name, value in zip(names, sample.values):
        if sample.kind is SensorKind.EEG:
            if name == "lead_off":
                parts.append(f"leadOff: {int(value)}")
            else:
                parts.append(f"{name}: {round(value)}µV")
        elif sample.kind is SensorKind.PPG:
            parts.append(f"{name}: {int(value)}")
        else:
            parts.append(f"{name}: {value:.3f}")
    return ", ".join(parts)


def recent_sample_lines(snapshot: SessionSnapshot, kind: SensorKind) -> list[str]:
    return [format_sample(s) for s in snapshot.samples_for(kind)]
