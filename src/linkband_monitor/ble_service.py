"""Bleak based device session service.

This adapter drives a real headband over BLE. It covers the connection level
of the device session contract:

- **Discovery**: a ``BleakScanner`` with a detection callback publishes every
  matching device while the scan runs, then stops after ``scan_timeout``.
- **Connection**: ``BleakClient`` with a disconnect callback; the battery
  level is read from the standard Battery Service when present.
- **Auto-reconnect**: unsolicited drops are retried with exponential backoff
  while auto-reconnect is enabled. A user disconnect never reconnects.
- **Streams**: each selected sensor subscribes to the notify characteristic
  configured in ``Settings.sensor_characteristics``. Payloads are stored as
  raw byte values; decoding the vendor packet format is the device SDK's job.

Bleak may invoke callbacks on a thread other than the one running the event
loop. Observable state is thread-safe; anything that needs the loop is
handed over with ``call_soon_threadsafe``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Optional

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from .config import BATTERY_LEVEL_CHAR, Settings
from .device_service import DeviceSessionService
from .sensors import DeviceDescriptor, SensorKind, SensorSample

logger = logging.getLogger(__name__)

_LINK_ERRORS = (BleakError, asyncio.TimeoutError, OSError)


def _matches_prefix(name: Optional[str], prefix: Optional[str]) -> bool:
    if not prefix:
        return True
    return bool(name) and name.startswith(prefix)  # type: ignore[union-attr]


class BleDeviceSessionService(DeviceSessionService):
    """Device session service backed by bleak.

    Attributes:
        _client: Connected client, or None.
        _address: Address of the current or last connected device.
        _user_disconnect: Set by :meth:`disconnect`; suppresses reconnection.
        _streaming: Sensors with an active notification subscription.
        _loop: Event loop that owns the background tasks.
    """

    def __init__(self, settings: Settings) -> None:
        super().__init__(plot_window=settings.plot_window)
        self._settings = settings
        self._client: Optional[BleakClient] = None
        self._address: Optional[str] = None
        self._user_disconnect = False
        self._streaming: set[SensorKind] = set()
        self._scan_task: Optional[asyncio.Task[Any]] = None
        self._link_task: Optional[asyncio.Task[Any]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.auto_reconnect_enabled.set(settings.auto_reconnect)

    # ----- scanning -----

    def start_scan(self) -> None:
        if self.scanning.get():
            return
        self.scanned_devices.set(())
        self.scanning.set(True)
        self._scan_task = self._spawn(self._run_scan(), "ble-scan")

    def stop_scan(self) -> None:
        if self._scan_task is not None and not self._scan_task.done():
            self._scan_task.cancel()
        self._scan_task = None
        self.scanning.set(False)

    async def _run_scan(self) -> None:
        found: dict[str, DeviceDescriptor] = {}
        prefix = self._settings.name_prefix

        def on_detect(device: BLEDevice, adv: AdvertisementData) -> None:
            name = adv.local_name or device.name
            logger.debug(
                "Device discovered: addr=%s name=%s rssi=%s",
                device.address,
                name,
                getattr(adv, "rssi", None),
            )
            if not _matches_prefix(name, prefix):
                return
            descriptor = DeviceDescriptor(address=device.address, name=name)
            if found.get(device.address) == descriptor:
                return
            found[device.address] = descriptor
            self.scanned_devices.set(tuple(found.values()))

        scanner = BleakScanner(detection_callback=on_detect)
        logger.info(
            "BLE scan started: prefix=%s timeout=%.1fs",
            prefix,
            self._settings.scan_timeout,
        )
        try:
            try:
                await scanner.start()
            except BleakError as e:
                logger.error(
                    "BLE scanner initialization failed: %s. Check that Bluetooth "
                    "is enabled and the adapter is accessible.",
                    e,
                )
                return
            try:
                await asyncio.sleep(self._settings.scan_timeout)
            finally:
                await scanner.stop()
        finally:
            # A restarted scan owns the flag now
            if self._scan_task is asyncio.current_task():
                self.scanning.set(False)
            logger.info("BLE scan finished: %d devices", len(found))

    # ----- connection -----

    def connect(self, address: str) -> None:
        if self.connected.get() or (
            self._link_task is not None and not self._link_task.done()
        ):
            logger.warning("Connection already active or pending; ignoring %s", address)
            return
        self.stop_scan()
        self._user_disconnect = False
        self._loop = asyncio.get_running_loop()
        self._link_task = self._spawn(self._open_link(address), "ble-connect")

    async def _open_link(self, address: str) -> bool:
        client = BleakClient(
            address,
            disconnected_callback=self._on_disconnect,
            timeout=self._settings.connect_timeout,
        )
        logger.info("BLE connection starting: %s", address)
        try:
            await client.connect()
        except _LINK_ERRORS as e:
            logger.error("BLE connection to %s failed: %s", address, e)
            return False
        if not client.is_connected:
            logger.error("BLE connection to %s failed", address)
            return False

        self._client = client
        self._address = address
        self.connected_device_name.set(self._lookup_name(address))
        await self._read_battery(client)
        self.connected.set(True)
        logger.info("BLE connection established: %s", address)
        return True

    def _lookup_name(self, address: str) -> Optional[str]:
        for device in self.scanned_devices.get():
            if device.address == address:
                return device.name
        return None

    async def _read_battery(self, client: BleakClient) -> None:
        try:
            data = await client.read_gatt_char(BATTERY_LEVEL_CHAR)
        except _LINK_ERRORS as e:
            logger.debug("Battery level not available: %s", e)
            return
        if data:
            self.battery_level.set(int(data[0]))

        def on_battery(_: Any, payload: bytearray) -> None:
            if payload:
                self.battery_level.set(int(payload[0]))

        try:
            await client.start_notify(BATTERY_LEVEL_CHAR, on_battery)
        except _LINK_ERRORS as e:
            logger.debug("Battery notifications not available: %s", e)

    def _on_disconnect(self, client: BleakClient) -> None:
        if client is not self._client:
            return
        logger.warning("BLE connection lost (callback): %s", self._address)
        self._client = None
        self._reset_link_state()
        if (
            not self._user_disconnect
            and self.auto_reconnect_enabled.get()
            and self._address is not None
            and self._loop is not None
            and not self._loop.is_closed()
        ):
            resume = bool(self._streaming)
            self._loop.call_soon_threadsafe(self._schedule_reconnect, self._address, resume)
        self._streaming.clear()

    def _schedule_reconnect(self, address: str, resume: bool) -> None:
        if self._link_task is not None and not self._link_task.done():
            return
        self._link_task = self._spawn(self._reconnect(address, resume), "ble-reconnect")

    async def _reconnect(self, address: str, resume: bool) -> None:
        delay = self._settings.reconnect_delay
        retries = self._settings.reconnect_max_retries
        for attempt in range(1, retries + 1):
            if self._user_disconnect or not self.auto_reconnect_enabled.get():
                logger.info("Auto-reconnect cancelled")
                return
            logger.info(
                "Reconnecting to %s in %.1fs (attempt %d/%d)",
                address,
                delay,
                attempt,
                retries,
            )
            await asyncio.sleep(delay)
            if await self._open_link(address):
                if resume:
                    self.start_selected_sensors()
                return
            delay *= self._settings.reconnect_backoff
        logger.error("Max reconnect retries (%d) exceeded. Giving up.", retries)

    def disconnect(self) -> None:
        self._user_disconnect = True
        if self._link_task is not None and not self._link_task.done():
            self._link_task.cancel()
        self._link_task = None
        self._spawn(self._close_link(), "ble-disconnect")

    async def _close_link(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await self._stop_notifications(client)
            try:
                await client.disconnect()
            except _LINK_ERRORS as e:
                logger.warning("Error during BLE disconnect: %s", e)
        self._reset_link_state()
        logger.info("BLE device disconnected")

    def _reset_link_state(self) -> None:
        self.recording.set(False)
        self.collection_active.set(False)
        self.connected.set(False)
        self.connected_device_name.set(None)
        self.battery_level.set(None)

    def enable_auto_reconnect(self) -> None:
        self.auto_reconnect_enabled.set(True)

    def disable_auto_reconnect(self) -> None:
        self.auto_reconnect_enabled.set(False)

    # ----- sensors -----

    def select_sensor(self, kind: SensorKind) -> None:
        self._toggle_selection(kind, True)

    def deselect_sensor(self, kind: SensorKind) -> None:
        self._toggle_selection(kind, False)

    def start_selected_sensors(self) -> None:
        client = self._client
        if client is None or not self.connected.get():
            logger.warning("Cannot start sensors: not connected")
            return
        kinds = self.selected_sensors.get()
        if not kinds:
            logger.warning("Cannot start sensors: none selected")
            return
        self._spawn(self._start_streams(client, kinds), "ble-start-streams")

    async def _start_streams(self, client: BleakClient, kinds: frozenset[SensorKind]) -> None:
        started: list[SensorKind] = []
        for kind in sorted(kinds, key=lambda k: k.value):
            uuid = self._settings.sensor_characteristics.get(kind)
            if uuid is None:
                logger.warning("No notify characteristic configured for %s", kind.value)
                continue
            try:
                await client.start_notify(uuid, self._notification_handler(kind))
            except _LINK_ERRORS as e:
                logger.error("Failed to subscribe to %s (%s): %s", kind.value, uuid, e)
                continue
            started.append(kind)
        if not started:
            logger.error("No sensor stream could be started")
            return
        self._streaming = set(started)
        self._clear_samples()
        self.collection_active.set(True)
        logger.info("Sensor streams started: %s", ", ".join(k.value for k in started))

    def _notification_handler(self, kind: SensorKind) -> Callable[[Any, bytearray], None]:
        buffer = self.buffer(kind)

        def handle(_: Any, data: bytearray) -> None:
            sample = SensorSample(
                kind=kind,
                timestamp_ms=int(time.time() * 1000),
                values=tuple(data),
            )
            buffer.extend([sample])

        return handle

    def stop_selected_sensors(self) -> None:
        client = self._client
        if client is None:
            self.recording.set(False)
            self.collection_active.set(False)
            return
        self._spawn(self._stop_streams(client), "ble-stop-streams")

    async def _stop_streams(self, client: BleakClient) -> None:
        await self._stop_notifications(client)
        self.recording.set(False)
        self.collection_active.set(False)

    async def _stop_notifications(self, client: BleakClient) -> None:
        for kind in list(self._streaming):
            uuid = self._settings.sensor_characteristics[kind]
            try:
                await client.stop_notify(uuid)
            except _LINK_ERRORS as e:
                logger.warning("Failed to unsubscribe %s: %s", kind.value, e)
        self._streaming.clear()

    # ----- recording -----

    def start_recording(self) -> None:
        if not self.collection_active.get():
            logger.warning("Cannot record: sensors are not streaming")
            return
        self.recording.set(True)
        logger.info("Recording started")

    def stop_recording(self) -> None:
        if self.recording.set(False):
            logger.info("Recording stopped")

    async def close(self) -> None:
        self._user_disconnect = True
        await self._close_link()
        await super().close()
