from __future__ import annotations

import asyncio

from linkband_monitor.device_service import MOCK_DEVICES, SampleBuffer
from linkband_monitor.observable import ObservableValue
from linkband_monitor.sensors import CHANNELS, SensorKind, SensorSample

EEG, PPG, ACC = SensorKind.EEG, SensorKind.PPG, SensorKind.ACC


def test_sample_buffer_is_bounded_and_published():
    target = ObservableValue(())
    buffer = SampleBuffer(target, max_size=4)
    buffer.extend([SensorSample(ACC, i, (0.0, 0.0, 1.0)) for i in range(6)])

    assert len(buffer.get_recent(10)) == 4
    assert [s.timestamp_ms for s in buffer.get_recent(2)] == [4, 5]
    assert [s.timestamp_ms for s in target.get()] == [2, 3, 4, 5]

    buffer.clear()
    assert target.get() == ()
    assert buffer.get_recent(10) == []


def test_scan_lists_devices_then_stops(mock_service, wait_for):
    async def scenario():
        mock_service.start_scan()
        assert mock_service.scanning.get()
        await wait_for(lambda: not mock_service.scanning.get())
        await mock_service.close()

    asyncio.run(scenario())
    assert mock_service.scanned_devices.get() == MOCK_DEVICES
    assert MOCK_DEVICES[2].display_name == "Unknown device"


def test_connect_stops_scan(mock_service, wait_for):
    async def scenario():
        mock_service.start_scan()
        mock_service.connect(MOCK_DEVICES[0].address)
        assert not mock_service.scanning.get()
        await wait_for(lambda: mock_service.connected.get())
        await mock_service.close()

    asyncio.run(scenario())
    assert mock_service.connected_device_name.get() == "LinkBand-1001"
    assert mock_service.commands == ["start_scan", f"connect:{MOCK_DEVICES[0].address}", "stop_scan"]


def test_streams_selected_sensors_only(mock_service, wait_for):
    async def scenario():
        mock_service.connect(MOCK_DEVICES[1].address)
        await wait_for(lambda: mock_service.connected.get())
        mock_service.select_sensor(EEG)
        mock_service.select_sensor(ACC)
        mock_service.start_selected_sensors()
        await wait_for(lambda: len(mock_service.samples[EEG].get()) > 5)
        await wait_for(lambda: len(mock_service.samples[ACC].get()) > 0)
        mock_service.stop_selected_sensors()
        await mock_service.close()

    asyncio.run(scenario())
    assert mock_service.collection_active.get() is False
    assert mock_service.samples[PPG].get() == ()
    eeg = mock_service.samples[EEG].get()
    assert all(len(s.values) == len(CHANNELS[EEG]) for s in eeg)
    assert all(a.timestamp_ms <= b.timestamp_ms for a, b in zip(eeg, eeg[1:]))


def test_start_requires_connection_and_selection(mock_service):
    async def scenario():
        mock_service.select_sensor(EEG)
        mock_service.start_selected_sensors()
        await asyncio.sleep(0.02)
        return mock_service.collection_active.get()

    assert asyncio.run(scenario()) is False


def test_recording_requires_streaming(mock_service):
    mock_service.start_recording()
    assert mock_service.recording.get() is False


def test_disconnect_resets_link_state(mock_service, wait_for):
    async def scenario():
        mock_service.connect(MOCK_DEVICES[0].address)
        await wait_for(lambda: mock_service.connected.get())
        mock_service.select_sensor(PPG)
        mock_service.start_selected_sensors()
        await wait_for(lambda: mock_service.collection_active.get())
        mock_service.start_recording()
        assert mock_service.recording.get()
        mock_service.disconnect()
        await mock_service.close()

    asyncio.run(scenario())
    assert mock_service.connected.get() is False
    assert mock_service.collection_active.get() is False
    assert mock_service.recording.get() is False
    assert mock_service.battery_level.get() is None
    assert mock_service.selected_sensors.get() == frozenset({PPG})


def test_drop_without_auto_reconnect_stays_down(mock_service, wait_for):
    async def scenario():
        mock_service.connect(MOCK_DEVICES[0].address)
        await wait_for(lambda: mock_service.connected.get())
        mock_service.simulate_drop()
        await asyncio.sleep(0.02)
        await mock_service.close()

    asyncio.run(scenario())
    assert mock_service.connected.get() is False


def test_state_observables_cover_store_fields(mock_service):
    names = set(mock_service.state_observables())
    assert {"connected", "selected_sensors", "eeg_samples", "ppg_samples", "acc_samples"} <= names


def test_restarted_scan_keeps_scanning_flag(mock_service, wait_for):
    async def scenario():
        mock_service.start_scan()
        await asyncio.sleep(0.01)
        mock_service.stop_scan()
        mock_service.start_scan()
        for _ in range(5):
            await asyncio.sleep(0)
        restarted = mock_service.scanning.get()
        await wait_for(lambda: not mock_service.scanning.get())
        await mock_service.close()
        return restarted

    assert asyncio.run(scenario()) is True
    assert mock_service.scanned_devices.get() == MOCK_DEVICES


def test_clear_session_data(mock_service):
    mock_service.scanned_devices.set(MOCK_DEVICES)
    mock_service.buffer(ACC).extend([SensorSample(ACC, 0, (0.0, 0.0, 1.0))])

    mock_service.clear_session_data()

    assert mock_service.scanned_devices.get() == ()
    assert mock_service.samples[ACC].get() == ()
