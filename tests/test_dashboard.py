from __future__ import annotations

from linkband_monitor.dashboard import MonitorDashboard, create_app
from linkband_monitor.dashboard.app import device_entries, sensor_sections
from linkband_monitor.device_service import MOCK_DEVICES
from linkband_monitor.sensors import SensorKind, SensorSample
from linkband_monitor.store import SessionSnapshot

EEG, PPG, ACC = SensorKind.EEG, SensorKind.PPG, SensorKind.ACC


def _ids(component, found=None):
    found = [] if found is None else found
    component_id = getattr(component, "id", None)
    if component_id is not None:
        found.append(component_id)
    children = getattr(component, "children", None)
    if isinstance(children, (list, tuple)):
        for child in children:
            _ids(child, found)
    elif children is not None and hasattr(children, "children"):
        _ids(children, found)
    return found


def test_layout_contains_both_screens(mock_service):
    dashboard = create_app(mock_service)

    assert isinstance(dashboard, MonitorDashboard)
    ids = _ids(dashboard.app.layout)
    for expected in (
        "scanner-panel",
        "data-panel",
        "scan-btn",
        "sensor-checklist",
        "record-btn",
        "disconnect-btn",
        "sensor-plot",
        "interval-component",
    ):
        assert expected in ids


def test_device_entries_have_connect_buttons():
    entries = device_entries(MOCK_DEVICES)
    buttons = [e.children[2] for e in entries]

    assert [b.id["index"] for b in buttons] == [d.address for d in MOCK_DEVICES]
    assert entries[2].children[0].children == "Unknown device"


def test_device_entries_empty():
    assert device_entries(())[0].children == "No devices found"


def test_sensor_sections_show_pending_and_samples():
    samples = tuple(SensorSample(EEG, i, (1.0, 2.0, 0.0)) for i in range(3))
    snapshot = SessionSnapshot(
        collection_active=True,
        selected_sensors=frozenset({EEG, ACC}),
        started_sensors=frozenset({EEG}),
        eeg_samples=samples,
        indicator_dots=2,
    )

    sections = sensor_sections(snapshot)

    assert [s.id for s in sections] == ["sensor-section-eeg", "sensor-section-acc"]
    eeg_lines = [c.children for c in sections[0].children[1:]]
    assert eeg_lines[0] == "timestamp: 0, ch1: 1µV, ch2: 2µV, leadOff: 0"
    assert sections[1].children[1].children == "Receiving.."


def test_selected_but_idle_sensor_is_not_started():
    snapshot = SessionSnapshot(selected_sensors=frozenset({PPG}))
    sections = sensor_sections(snapshot)
    assert sections[0].children[1].children == "Not started"
