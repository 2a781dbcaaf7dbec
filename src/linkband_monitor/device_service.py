"""Device session service contract and the synthetic implementation.

The device session service is the boundary to the headband: it owns
discovery, connection, sensor streaming and recording, and reports everything
it does as observable state. The session core never receives return values
from it; every command is fire-and-forget and completion shows up as a state
change.

Implementations:

- :class:`MockDeviceSessionService`: synthetic devices and signals, used for
  UI development, demos and tests.
- :class:`~linkband_monitor.ble_service.BleDeviceSessionService`: a bleak
  based adapter for real hardware.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Coroutine, Optional, Sequence

from .observable import ObservableValue
from .sensors import (
    SAMPLE_RATES_HZ,
    DeviceDescriptor,
    SensorKind,
    SensorSample,
)

logger = logging.getLogger(__name__)


class SampleBuffer:
    """Thread-safe bounded buffer of recent samples for one sensor stream.

    The device streams are conceptually append-only; consumers only ever look
    at the most recent entries, so older samples are dropped once ``max_size``
    is reached. Every append publishes a tuple snapshot of the buffer to the
    attached :class:`ObservableValue`, which keeps published values immutable.

    Attributes:
        _max_size: Maximum number of samples retained.
        _buffer: Bounded deque with the samples.
        _lock: Reentrant lock guarding the deque.
    """

    def __init__(self, target: ObservableValue[tuple[SensorSample, ...]], max_size: int = 250):
        self._target = target
        self._max_size = max_size
        self._buffer: deque[SensorSample] = deque(maxlen=max_size)
        self._lock = threading.RLock()

    def extend(self, samples: Sequence[SensorSample]) -> None:
        """Append a batch of samples and publish the new window."""
        if not samples:
            return
        with self._lock:
            self._buffer.extend(samples)
            snapshot = tuple(self._buffer)
        self._target.set(snapshot)

    def get_recent(self, count: int) -> list[SensorSample]:
        with self._lock:
            if count >= len(self._buffer):
                return list(self._buffer)
            return list(self._buffer)[-count:]

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()
        self._target.set(())


class DeviceSessionService(ABC):
    """Abstract device session service.

    Subclasses publish their state through the observable attributes created
    here and implement the commands. Commands must not block: anything that
    takes time runs as a background task started with :meth:`_spawn`, and its
    outcome is reported through the observables.

    Observable state:
        connected: True while a device is connected.
        connected_device_name: Name of the connected device, or None.
        scanning: True while a scan is running.
        scanned_devices: Devices found by the current scan, replaced wholesale.
        collection_active: True while the selected sensors are streaming.
        selected_sensors: Sensors that the next start will activate.
        battery_level: Battery percentage 0-100, or None when unknown.
        recording: True while a recording is in progress.
        auto_reconnect_enabled: Whether unsolicited drops are reconnected.
        samples: Recent samples per sensor.

    Observables may be set from any thread; consumers are responsible for
    moving notifications onto their own context.
    """

    def __init__(self, plot_window: int = 250) -> None:
        self.connected: ObservableValue[bool] = ObservableValue(False, "connected")
        self.connected_device_name: ObservableValue[Optional[str]] = ObservableValue(
            None, "connected_device_name"
        )
        self.scanning: ObservableValue[bool] = ObservableValue(False, "scanning")
        self.scanned_devices: ObservableValue[tuple[DeviceDescriptor, ...]] = (
            ObservableValue((), "scanned_devices")
        )
        self.collection_active: ObservableValue[bool] = ObservableValue(
            False, "collection_active"
        )
        self.selected_sensors: ObservableValue[frozenset[SensorKind]] = (
            ObservableValue(frozenset(), "selected_sensors")
        )
        self.battery_level: ObservableValue[Optional[int]] = ObservableValue(
            None, "battery_level"
        )
        self.recording: ObservableValue[bool] = ObservableValue(False, "recording")
        self.auto_reconnect_enabled: ObservableValue[bool] = ObservableValue(
            False, "auto_reconnect_enabled"
        )
        self.samples: dict[SensorKind, ObservableValue[tuple[SensorSample, ...]]] = {
            kind: ObservableValue((), f"{kind.value.lower()}_samples")
            for kind in SensorKind
        }
        self._buffers: dict[SensorKind, SampleBuffer] = {
            kind: SampleBuffer(self.samples[kind], max_size=plot_window)
            for kind in SensorKind
        }
        self._tasks: set[asyncio.Task[Any]] = set()

    def state_observables(self) -> dict[str, ObservableValue[Any]]:
        """Observable state keyed by session store field name."""
        observables: dict[str, ObservableValue[Any]] = {
            "connected": self.connected,
            "connected_device_name": self.connected_device_name,
            "scanning": self.scanning,
            "scanned_devices": self.scanned_devices,
            "collection_active": self.collection_active,
            "selected_sensors": self.selected_sensors,
            "battery_level": self.battery_level,
            "recording": self.recording,
            "auto_reconnect_enabled": self.auto_reconnect_enabled,
        }
        for kind, observable in self.samples.items():
            observables[observable.name] = observable
        return observables

    def buffer(self, kind: SensorKind) -> SampleBuffer:
        return self._buffers[kind]

    # ----- commands -----

    @abstractmethod
    def start_scan(self) -> None:
        """Start discovering devices; results appear in ``scanned_devices``."""

    @abstractmethod
    def stop_scan(self) -> None:
        """Stop a running scan."""

    @abstractmethod
    def connect(self, address: str) -> None:
        """Connect to the device with the given address.

        Success is reported by ``connected`` turning True. Failure leaves
        ``connected`` False; the reason is only logged.
        """

    @abstractmethod
    def disconnect(self) -> None:
        """Disconnect the current device. Never triggers auto-reconnect."""

    @abstractmethod
    def enable_auto_reconnect(self) -> None:
        pass

    @abstractmethod
    def disable_auto_reconnect(self) -> None:
        pass

    @abstractmethod
    def select_sensor(self, kind: SensorKind) -> None:
        pass

    @abstractmethod
    def deselect_sensor(self, kind: SensorKind) -> None:
        pass

    @abstractmethod
    def start_selected_sensors(self) -> None:
        """Start streaming the selected sensors.

        ``collection_active`` turns True once the device streams.
        """

    @abstractmethod
    def stop_selected_sensors(self) -> None:
        """Stop streaming; ``collection_active`` turns False."""

    @abstractmethod
    def start_recording(self) -> None:
        pass

    @abstractmethod
    def stop_recording(self) -> None:
        pass

    def clear_session_data(self) -> None:
        """Forget scan results and recent samples."""
        self.scanned_devices.set(())
        self._clear_samples()

    async def close(self) -> None:
        """Cancel background work. Safe to call more than once."""
        tasks = [t for t in self._tasks if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    # ----- helpers for subclasses -----

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str = "") -> asyncio.Task[Any]:
        """Run ``coro`` as a fire-and-forget task on the running loop.

        Exceptions are logged when the task finishes; cancellation is silent.
        """
        task = asyncio.get_running_loop().create_task(coro, name=name or None)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Device service task %s failed: %s",
                task.get_name(),
                exc,
                exc_info=exc,
            )

    def _toggle_selection(self, kind: SensorKind, selected: bool) -> None:
        current = self.selected_sensors.get()
        updated = current | {kind} if selected else current - {kind}
        self.selected_sensors.set(frozenset(updated))

    def _clear_samples(self) -> None:
        for buffer in self._buffers.values():
            buffer.clear()


MOCK_DEVICES: tuple[DeviceDescriptor, ...] = (
    DeviceDescriptor(address="C4:4F:33:6A:10:01", name="LinkBand-1001"),
    DeviceDescriptor(address="C4:4F:33:6A:10:02", name="LinkBand-1002"),
    DeviceDescriptor(address="5A:21:9E:04:C7:3B", name=None),
)


class MockDeviceSessionService(DeviceSessionService):
    """Synthetic device session service for development and testing.

    Simulates the full device lifecycle with configurable delays:

    - **Scan**: devices from ``devices`` appear one by one, and the scan stops
      by itself after ``scan_timeout``.
    - **Connect**: ``connected`` turns True after ``connect_delay`` with a
      fixed battery level.
    - **Sensors**: after ``activation_delay`` the selected sensors stream
      synthetic signals at their nominal rates, emitted in batches every
      ``batch_interval`` seconds.
    - **Drops**: :meth:`simulate_drop` cuts the link without a disconnect
      command; with auto-reconnect enabled the device comes back after
      ``connect_delay`` and resumes streaming.

    Signal shapes:
    - EEG: two channels of alpha-band sine plus Gaussian noise (uV), with
      occasional lead-off flags.
    - PPG: red/IR pulse waveform around a DC offset at ~72 bpm.
    - ACC: gravity on Z with slow sway on X/Y (g).

    Zero delays make every transition happen on the next loop iteration,
    which keeps tests fast and deterministic.
    """

    def __init__(
        self,
        *,
        devices: Sequence[DeviceDescriptor] = MOCK_DEVICES,
        scan_timeout: float = 10.0,
        scan_interval: float = 0.3,
        connect_delay: float = 0.8,
        activation_delay: float = 1.0,
        batch_interval: float = 0.04,
        battery_level: int = 87,
        plot_window: int = 250,
    ) -> None:
        super().__init__(plot_window=plot_window)
        self._devices = tuple(devices)
        self._scan_timeout = scan_timeout
        self._scan_interval = scan_interval
        self._connect_delay = connect_delay
        self._activation_delay = activation_delay
        self._batch_interval = batch_interval
        self._battery = battery_level
        self._scan_task: Optional[asyncio.Task[Any]] = None
        self._connect_task: Optional[asyncio.Task[Any]] = None
        self._stream_task: Optional[asyncio.Task[Any]] = None
        self._address: Optional[str] = None
        self._resume_streaming = False
        self._start_time = time.time()
        self.commands: list[str] = []

    # ----- scanning -----

    def start_scan(self) -> None:
        self.commands.append("start_scan")
        if self.scanning.get():
            return
        self.scanned_devices.set(())
        self.scanning.set(True)
        self._scan_task = self._spawn(self._run_scan(), "mock-scan")

    def stop_scan(self) -> None:
        self.commands.append("stop_scan")
        self._cancel(self._scan_task)
        self._scan_task = None
        self.scanning.set(False)

    async def _run_scan(self) -> None:
        logger.info("Mock scan started (timeout=%.1fs)", self._scan_timeout)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._scan_timeout
        try:
            for device in self._devices:
                await asyncio.sleep(self._scan_interval)
                self.scanned_devices.set(self.scanned_devices.get() + (device,))
                logger.debug("Mock device discovered: %s", device)
            remaining = deadline - loop.time()
            if remaining > 0:
                await asyncio.sleep(remaining)
        finally:
            # A restarted scan owns the flag now
            if self._scan_task is asyncio.current_task():
                self.scanning.set(False)
            logger.info("Mock scan finished: %d devices", len(self.scanned_devices.get()))

    # ----- connection -----

    def connect(self, address: str) -> None:
        self.commands.append(f"connect:{address}")
        if self.connected.get():
            logger.warning("Already connected; ignoring connect to %s", address)
            return
        self.stop_scan()
        self._cancel(self._connect_task)
        self._connect_task = self._spawn(self._run_connect(address), "mock-connect")

    async def _run_connect(self, address: str) -> None:
        await asyncio.sleep(self._connect_delay)
        device = next((d for d in self._devices if d.address == address), None)
        if device is None:
            logger.error("Mock device %s not found", address)
            return
        self._address = address
        self.connected_device_name.set(device.name)
        self.battery_level.set(self._battery)
        self.connected.set(True)
        logger.info("Mock device connected: %s", device.display_name)
        if self._resume_streaming:
            self._resume_streaming = False
            self.start_selected_sensors()

    def disconnect(self) -> None:
        self.commands.append("disconnect")
        self._resume_streaming = False
        self._cancel(self._connect_task)
        self._connect_task = None
        self._drop_link()
        self._address = None
        logger.info("Mock device disconnected")

    def simulate_drop(self) -> None:
        """Drop the link as if the device went out of range."""
        address = self._address
        was_streaming = self.collection_active.get()
        self._drop_link()
        logger.warning("Mock link dropped")
        if self.auto_reconnect_enabled.get() and address is not None:
            self._resume_streaming = was_streaming
            self._connect_task = self._spawn(self._run_connect(address), "mock-reconnect")

    def _drop_link(self) -> None:
        self._stop_streaming()
        self.recording.set(False)
        self.connected.set(False)
        self.connected_device_name.set(None)
        self.battery_level.set(None)

    def enable_auto_reconnect(self) -> None:
        self.commands.append("enable_auto_reconnect")
        self.auto_reconnect_enabled.set(True)

    def disable_auto_reconnect(self) -> None:
        self.commands.append("disable_auto_reconnect")
        self.auto_reconnect_enabled.set(False)

    # ----- sensors -----

    def select_sensor(self, kind: SensorKind) -> None:
        self.commands.append(f"select:{kind.value}")
        self._toggle_selection(kind, True)

    def deselect_sensor(self, kind: SensorKind) -> None:
        self.commands.append(f"deselect:{kind.value}")
        self._toggle_selection(kind, False)

    def start_selected_sensors(self) -> None:
        self.commands.append("start_selected_sensors")
        if not self.connected.get():
            logger.warning("Cannot start sensors: not connected")
            return
        kinds = self.selected_sensors.get()
        if not kinds:
            logger.warning("Cannot start sensors: none selected")
            return
        self._cancel(self._stream_task)
        self._stream_task = self._spawn(self._run_stream(kinds), "mock-stream")

    def stop_selected_sensors(self) -> None:
        self.commands.append("stop_selected_sensors")
        self._stop_streaming()

    def _stop_streaming(self) -> None:
        self._cancel(self._stream_task)
        self._stream_task = None
        self.recording.set(False)
        self.collection_active.set(False)

    async def _run_stream(self, kinds: frozenset[SensorKind]) -> None:
        await asyncio.sleep(self._activation_delay)
        self._clear_samples()
        self.collection_active.set(True)
        logger.info(
            "Mock streaming started: %s", ", ".join(sorted(k.value for k in kinds))
        )
        carry = {kind: 0.0 for kind in kinds}
        last = time.time()
        while True:
            await asyncio.sleep(self._batch_interval)
            now = time.time()
            elapsed = now - last
            last = now
            for kind in kinds:
                # Fractional sample counts carry over to the next batch
                carry[kind] += elapsed * SAMPLE_RATES_HZ[kind]
                count = int(carry[kind])
                carry[kind] -= count
                if count:
                    self._buffers[kind].extend(
                        [
                            self._synthesize(kind, now - (count - i - 1) / SAMPLE_RATES_HZ[kind])
                            for i in range(count)
                        ]
                    )

    def _synthesize(self, kind: SensorKind, t: float) -> SensorSample:
        elapsed = t - self._start_time
        if kind is SensorKind.EEG:
            ch1 = 20.0 * math.sin(2 * math.pi * 10.0 * elapsed) + random.gauss(0, 5.0)
            ch2 = 15.0 * math.sin(2 * math.pi * 10.0 * elapsed + 0.6) + random.gauss(0, 5.0)
            lead_off = 1.0 if random.random() < 0.01 else 0.0
            values: tuple[float, ...] = (ch1, ch2, lead_off)
        elif kind is SensorKind.PPG:
            pulse = max(0.0, math.sin(2 * math.pi * 1.2 * elapsed)) ** 3
            red = 52000.0 + 1800.0 * pulse + random.gauss(0, 60.0)
            ir = 61000.0 + 2400.0 * pulse + random.gauss(0, 60.0)
            values = (round(red), round(ir))
        else:
            x = 0.05 * math.sin(2 * math.pi * 0.3 * elapsed) + random.gauss(0, 0.01)
            y = 0.05 * math.cos(2 * math.pi * 0.2 * elapsed) + random.gauss(0, 0.01)
            z = 1.0 + random.gauss(0, 0.01)
            values = (x, y, z)
        return SensorSample(kind=kind, timestamp_ms=int(t * 1000), values=values)

    # ----- recording -----

    def start_recording(self) -> None:
        self.commands.append("start_recording")
        if not self.collection_active.get():
            logger.warning("Cannot record: sensors are not streaming")
            return
        self.recording.set(True)

    def stop_recording(self) -> None:
        self.commands.append("stop_recording")
        self.recording.set(False)

    @staticmethod
    def _cancel(task: Optional[asyncio.Task[Any]]) -> None:
        if task is not None and not task.done():
            task.cancel()
