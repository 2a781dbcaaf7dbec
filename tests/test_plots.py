from __future__ import annotations

from linkband_monitor.dashboard.plots import create_sensor_layout, decoded
from linkband_monitor.sensors import SensorKind, SensorSample

EEG, PPG, ACC = SensorKind.EEG, SensorKind.PPG, SensorKind.ACC


def _eeg(count):
    return [SensorSample(EEG, 1000 + 4 * i, (float(i), -float(i), 0.0)) for i in range(count)]


def test_traces_exclude_lead_off():
    fig = create_sensor_layout({EEG: _eeg(5)}, [EEG])

    assert [t.name for t in fig.data] == ["EEG ch1", "EEG ch2"]
    assert list(fig.data[0].x) == [0.0, 0.004, 0.008, 0.012, 0.016]
    assert list(fig.data[1].y) == [0.0, -1.0, -2.0, -3.0, -4.0]


def test_undecoded_samples_are_skipped():
    raw = SensorSample(PPG, 0, (1, 2, 3, 4))
    assert decoded([raw]) == []

    fig = create_sensor_layout({PPG: [raw]}, [PPG])
    assert len(fig.data) == 0
    assert "No data available" in [a.text for a in fig.layout.annotations]


def test_layout_one_row_per_sensor():
    acc = [SensorSample(ACC, i * 40, (0.0, 0.1, 1.0)) for i in range(3)]
    fig = create_sensor_layout({EEG: _eeg(3), ACC: acc}, [EEG, PPG, ACC])

    assert len(fig.data) == 5
    titles = [a.text for a in fig.layout.annotations]
    assert "EEG (250Hz)" in titles
    assert "No data available" in titles
    assert list(fig.layout.yaxis3.range) == [-2, 2]


def test_layout_without_sensors():
    fig = create_sensor_layout({}, [])
    assert fig.layout.annotations[0].text == "No sensors streaming"
