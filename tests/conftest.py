from __future__ import annotations

import asyncio

import pytest

from linkband_monitor.device_service import DeviceSessionService, MockDeviceSessionService
from linkband_monitor.sensors import SensorKind
from linkband_monitor.store import SessionStateStore


class FakeDeviceService(DeviceSessionService):
    """Records commands and leaves every state transition to the test."""

    def __init__(self) -> None:
        super().__init__(plot_window=10)
        self.commands: list[str] = []

    def start_scan(self) -> None:
        self.commands.append("start_scan")

    def stop_scan(self) -> None:
        self.commands.append("stop_scan")

    def connect(self, address: str) -> None:
        self.commands.append(f"connect:{address}")

    def disconnect(self) -> None:
        self.commands.append("disconnect")

    def enable_auto_reconnect(self) -> None:
        self.commands.append("enable_auto_reconnect")
        self.auto_reconnect_enabled.set(True)

    def disable_auto_reconnect(self) -> None:
        self.commands.append("disable_auto_reconnect")
        self.auto_reconnect_enabled.set(False)

    def select_sensor(self, kind: SensorKind) -> None:
        self.commands.append(f"select:{kind.value}")
        self._toggle_selection(kind, True)

    def deselect_sensor(self, kind: SensorKind) -> None:
        self.commands.append(f"deselect:{kind.value}")
        self._toggle_selection(kind, False)

    def start_selected_sensors(self) -> None:
        self.commands.append("start_selected_sensors")

    def stop_selected_sensors(self) -> None:
        self.commands.append("stop_selected_sensors")

    def start_recording(self) -> None:
        self.commands.append("start_recording")

    def stop_recording(self) -> None:
        self.commands.append("stop_recording")


async def _settle(rounds: int = 5) -> None:
    """Let queued callbacks and zero-delay tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def settle():
    return _settle


@pytest.fixture
def wait_for():
    return _wait_for


@pytest.fixture
def store() -> SessionStateStore:
    return SessionStateStore(sample_window=3)


@pytest.fixture
def fake_service() -> FakeDeviceService:
    return FakeDeviceService()


@pytest.fixture
def mock_service() -> MockDeviceSessionService:
    return MockDeviceSessionService(
        scan_timeout=0.05,
        scan_interval=0,
        connect_delay=0,
        activation_delay=0,
        batch_interval=0.01,
    )
