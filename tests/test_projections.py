from __future__ import annotations

import pytest

from linkband_monitor.projections import (
    battery_tier,
    can_record,
    can_start_sensors,
    connection_state,
    connection_status_text,
    data_status_text,
    format_sample,
    pending_activation,
    pending_label,
    pending_sensors,
    recent_sample_lines,
    recording_status_text,
    sampling_rate_label,
)
from linkband_monitor.sensors import ConnectionState, SensorKind, SensorSample
from linkband_monitor.store import SessionSnapshot

EEG, PPG, ACC = SensorKind.EEG, SensorKind.PPG, SensorKind.ACC


@pytest.mark.parametrize(
    "connected, scanning, expected",
    [
        (False, False, ConnectionState.DISCONNECTED),
        (False, True, ConnectionState.SCANNING),
        (True, False, ConnectionState.CONNECTED),
        (True, True, ConnectionState.CONNECTED),
    ],
)
def test_connection_state(connected, scanning, expected):
    assert connection_state(connected, scanning) is expected


def test_pending_requires_request_or_collection():
    kwargs = dict(selected=frozenset({EEG}), started=frozenset())
    assert not pending_activation(EEG, activation_requested=False, collection_active=False, **kwargs)
    assert pending_activation(EEG, activation_requested=True, collection_active=False, **kwargs)
    assert pending_activation(EEG, activation_requested=False, collection_active=True, **kwargs)


def test_started_sensor_is_not_pending():
    assert not pending_activation(
        EEG,
        selected=frozenset({EEG}),
        started=frozenset({EEG}),
        activation_requested=True,
        collection_active=True,
    )


def test_pending_sensors_during_collection():
    snap = SessionSnapshot(
        collection_active=True,
        selected_sensors=frozenset({EEG, ACC}),
        started_sensors=frozenset({EEG}),
    )
    assert pending_sensors(snap) == frozenset({ACC})


def test_record_gating():
    assert not can_record(SessionSnapshot(connected=False, collection_active=True))
    assert not can_record(SessionSnapshot(connected=True, collection_active=False))
    assert can_record(SessionSnapshot(connected=True, collection_active=True))


def test_start_gating():
    assert not can_start_sensors(SessionSnapshot())
    assert can_start_sensors(SessionSnapshot(selected_sensors=frozenset({PPG})))


def test_status_texts():
    assert connection_status_text(SessionSnapshot()) == "Disconnected"
    assert connection_status_text(SessionSnapshot(scanning=True)) == "Scanning"
    assert (
        connection_status_text(SessionSnapshot(connected=True, connected_device_name="LinkBand-1001"))
        == "LinkBand-1001 Connected"
    )
    assert data_status_text(SessionSnapshot()) == "No data"
    assert data_status_text(SessionSnapshot(selected_sensors=frozenset({EEG}))) == "Sensors selected"
    assert data_status_text(SessionSnapshot(collection_active=True)) == "Receiving data"
    assert recording_status_text(SessionSnapshot(recording=True)) == "Recording"
    assert recording_status_text(SessionSnapshot()) == "Not recording"


@pytest.mark.parametrize(
    "level, tier",
    [(None, None), (100, "ok"), (51, "ok"), (50, "low"), (21, "low"), (20, "critical"), (0, "critical")],
)
def test_battery_tier(level, tier):
    assert battery_tier(level) == tier


def test_pending_label_clamps_dots():
    assert pending_label(1) == "Receiving."
    assert pending_label(3) == "Receiving..."
    assert pending_label(0) == "Receiving."
    assert pending_label(9) == "Receiving..."


def test_sampling_rate_label():
    assert [sampling_rate_label(k) for k in SensorKind] == ["EEG (250Hz)", "PPG (50Hz)", "ACC (25Hz)"]


def test_format_sample():
    eeg = SensorSample(EEG, 1000, (12.4, -3.6, 0.0))
    ppg = SensorSample(PPG, 1001, (52000, 61000))
    acc = SensorSample(ACC, 1002, (0.01, -0.02, 0.998))

    assert format_sample(eeg) == "timestamp: 1000, ch1: 12µV, ch2: -4µV, leadOff: 0"
    assert format_sample(ppg) == "timestamp: 1001, red: 52000, ir: 61000"
    assert format_sample(acc) == "timestamp: 1002, x: 0.010, y: -0.020, z: 0.998"


def test_format_undecoded_sample():
    raw = SensorSample(PPG, 5, (1, 171, 255))
    assert format_sample(raw) == "timestamp: 5, raw: 01 AB FF"


def test_recent_sample_lines():
    samples = tuple(SensorSample(ACC, i, (0.0, 0.0, 1.0)) for i in range(3))
    lines = recent_sample_lines(SessionSnapshot(acc_samples=samples), ACC)
    assert len(lines) == 3
    assert lines[0].startswith("timestamp: 0")
