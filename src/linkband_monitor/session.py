"""Monitor session: wiring, commands and lifecycle.

A :class:`MonitorSession` is created explicitly, started on an asyncio event
loop and disposed explicitly. While it runs:

1. Every observable of the device session service is watched, except the
   sensor selection, which the session owns after taking over its initial
   value. Notifications may arrive on any thread (bleak callbacks, for
   instance); they are marshalled onto the session loop with
   ``call_soon_threadsafe`` and only then written into the store.
2. Store watchers drive the derived state: collection-active transitions go
   to the activation coordinator, connection transitions go to the screen
   router, and the pending indicator is shown while any sensor is pending.
3. UI commands are plain methods returning a :class:`CommandResult`; device
   commands are forwarded fire-and-forget.

All mutation happens on the session loop. Other threads read state through
``store.snapshot()`` and send commands through :class:`SessionThread`.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from functools import partial
from typing import Any, Callable, Optional, TypeVar

from .config import Settings
from .coordinator import SensorActivationCoordinator
from .device_service import DeviceSessionService
from .errors import CommandResult, SessionError
from .indicator import PendingIndicator
from .projections import pending_sensors
from .router import ScreenRouter
from .sensors import ActiveScreen, SensorKind
from .store import SAMPLE_FIELDS, SessionStateStore

logger = logging.getLogger(__name__)

R = TypeVar("R")


class MonitorSession:
    """Session-scoped owner of the store, coordinator, router and indicator.

    Args:
        service: Device session service to mirror and command.
        settings: Monitor settings; defaults are used when omitted.
    """

    def __init__(self, service: DeviceSessionService, settings: Optional[Settings] = None) -> None:
        self._service = service
        self._settings = settings or Settings()
        self.store = SessionStateStore(sample_window=self._settings.sample_window)
        self.coordinator = SensorActivationCoordinator(self.store, service)
        self.router = ScreenRouter(
            self.store,
            return_to_scanner_on_drop=self._settings.return_to_scanner_on_drop,
        )
        self.indicator = PendingIndicator(self.store, self._settings.indicator_interval)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._unwatch: list[Callable[[], None]] = []
        self._started = False
        self._disposed = False

    @property
    def service(self) -> DeviceSessionService:
        return self._service

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def loop(self) -> Optional[asyncio.AbstractEventLoop]:
        return self._loop

    @property
    def running(self) -> bool:
        return self._started and not self._disposed

    # ----- lifecycle -----

    async def start(self) -> None:
        """Wire the session on the running loop and pull in the initial state.

        Raises:
            SessionError: If the session was already started or disposed.
        """
        if self._disposed:
            raise SessionError("Session has been disposed")
        if self._started:
            raise SessionError("Session already started")
        self._loop = asyncio.get_running_loop()
        self._started = True

        # Registration order matters: the coordinator must update the started
        # snapshot before the indicator re-evaluates pending sensors.
        store = self.store
        self._unwatch.append(
            store.watch("collection_active", self.coordinator.on_collection_active_changed)
        )
        for name in ("connected", "scanning"):
            self._unwatch.append(store.watch(name, self._on_connection_field))
        for name in (
            "collection_active",
            "selected_sensors",
            "started_sensors",
            "activation_requested",
        ):
            self._unwatch.append(store.watch(name, self._on_pending_inputs))

        # The selection is taken over once; afterwards only select/deselect
        # commands change it, so late echoes from the service are ignored.
        store.set("selected_sensors", self._service.selected_sensors.get())
        for name, observable in self._service.state_observables().items():
            if name == "selected_sensors":
                continue
            self._unwatch.append(observable.watch(partial(self._post, name)))

        if self._settings.auto_reconnect and not self._service.auto_reconnect_enabled.get():
            self._service.enable_auto_reconnect()

        # Let the initial values queued by the watchers land in the store
        await asyncio.sleep(0)
        logger.info("Monitor session started")

    def dispose(self) -> None:
        """Unsubscribe from the service and stop the indicator. Idempotent."""
        if self._disposed:
            return
        self._disposed = True
        for unwatch in self._unwatch:
            unwatch()
        self._unwatch.clear()
        self.indicator.hide()
        logger.info("Monitor session disposed")

    def _post(self, name: str, value: Any) -> None:
        loop = self._loop
        if self._disposed or loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._ingest, name, value)

    def _ingest(self, name: str, value: Any) -> None:
        if self._disposed:
            return
        self.store.set(name, value)

    def _on_connection_field(self, _: Any) -> None:
        snapshot = self.store.snapshot()
        self.router.on_connection_changed(snapshot.connected, snapshot.scanning)

    def _on_pending_inputs(self, _: Any) -> None:
        if self._disposed:
            return
        if pending_sensors(self.store.snapshot()):
            self.indicator.show()
        else:
            self.indicator.hide()

    def _check_open(self) -> None:
        if self._disposed:
            raise SessionError("Session has been disposed")
        if not self._started:
            raise SessionError("Session not started")

    # ----- scanner screen -----

    def start_scan(self) -> CommandResult:
        self._check_open()
        self._service.start_scan()
        return CommandResult.ACCEPTED

    def stop_scan(self) -> CommandResult:
        self._check_open()
        self._service.stop_scan()
        return CommandResult.ACCEPTED

    def toggle_scan(self) -> CommandResult:
        if self.store.get("scanning"):
            return self.stop_scan()
        return self.start_scan()

    def connect(self, address: str) -> CommandResult:
        self._check_open()
        logger.info("Connect requested: %s", address)
        self._service.connect(address)
        return CommandResult.ACCEPTED

    def set_auto_reconnect(self, enabled: bool) -> CommandResult:
        self._check_open()
        if enabled:
            self._service.enable_auto_reconnect()
        else:
            self._service.disable_auto_reconnect()
        return CommandResult.ACCEPTED

    # ----- data screen -----

    def disconnect(self) -> CommandResult:
        """Disconnect and leave the data view without waiting for completion."""
        self._check_open()
        logger.info("Disconnect requested")
        self._service.disconnect()
        self.router.on_disconnect_requested()
        return CommandResult.ACCEPTED

    def set_sensor_selected(self, kind: SensorKind, selected: bool) -> CommandResult:
        self._check_open()
        self.coordinator.on_selection_changed(kind, selected)
        return CommandResult.ACCEPTED

    def start_sensors(self) -> CommandResult:
        self._check_open()
        return self.coordinator.on_start_requested()

    def stop_sensors(self) -> CommandResult:
        self._check_open()
        return self.coordinator.on_stop_requested()

    def toggle_sensors(self) -> CommandResult:
        if self.store.get("collection_active"):
            return self.stop_sensors()
        return self.start_sensors()

    def start_recording(self) -> CommandResult:
        """Forward a recording request only while connected and collecting."""
        self._check_open()
        snapshot = self.store.snapshot()
        if not snapshot.connected:
            logger.info("Recording rejected: not connected")
            return CommandResult.NOT_CONNECTED
        if not snapshot.collection_active:
            logger.info("Recording rejected: sensors are not streaming")
            return CommandResult.NOT_COLLECTING
        self._service.start_recording()
        return CommandResult.ACCEPTED

    def stop_recording(self) -> CommandResult:
        self._check_open()
        self._service.stop_recording()
        return CommandResult.ACCEPTED

    def toggle_recording(self) -> CommandResult:
        if self.store.get("recording"):
            return self.stop_recording()
        return self.start_recording()

    def navigate(self, screen: ActiveScreen) -> CommandResult:
        self._check_open()
        if self.router.navigate(screen):
            return CommandResult.ACCEPTED
        return CommandResult.NAVIGATION_REJECTED

    def reset(self) -> CommandResult:
        """Disconnect, stop scanning and clear all session-scoped state."""
        self._check_open()
        logger.info("Resetting device session")
        self._service.disconnect()
        self._service.stop_scan()
        self._service.clear_session_data()
        for kind in self.store.get("selected_sensors"):
            self.coordinator.on_selection_changed(kind, False)
        # The link is going away; reconcile as a deactivation
        self.coordinator.on_collection_active_changed(False)
        self.store.update(scanned_devices=(), **{name: () for name in SAMPLE_FIELDS.values()})
        self.router.reset()
        self.indicator.hide()
        return CommandResult.ACCEPTED


class SessionThread:
    """Hosts a :class:`MonitorSession` on a dedicated event loop thread.

    Web frameworks such as Dash serve requests on their own threads. This
    class gives them a way to run session commands on the session loop and
    wait for the result, while reads go straight to ``store.snapshot()``.

    Attributes:
        session: The hosted session.
        _thread: Daemon thread running the loop.
        _loop: Event loop owned by the thread.
        _ready: Set once the session has started (or failed to start).
    """

    def __init__(self, session: MonitorSession) -> None:
        self.session = session
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._ready = threading.Event()
        self._stop: Optional[asyncio.Event] = None
        self._error: Optional[BaseException] = None

    def start(self, timeout: float = 5.0) -> None:
        """Start the loop thread and wait for the session to be running.

        Raises:
            SessionError: If the session fails to start within ``timeout``.
        """
        if self._thread is not None and self._thread.is_alive():
            return
        self._ready.clear()
        self._error = None
        self._thread = threading.Thread(target=self._run, daemon=True, name="MonitorSession")
        self._thread.start()
        if not self._ready.wait(timeout):
            raise SessionError("Session thread did not start in time")
        if self._error is not None:
            raise SessionError(f"Session failed to start: {self._error}") from self._error

    def _run(self) -> None:
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._main())
        except Exception as e:
            logger.exception("Session thread crashed: %s", e)
        finally:
            self._loop.close()
            logger.info("Session thread finished")

    async def _main(self) -> None:
        self._stop = asyncio.Event()
        try:
            await self.session.start()
        except Exception as e:
            self._error = e
            self._ready.set()
            raise
        self._ready.set()
        try:
            await self._stop.wait()
        finally:
            self.session.dispose()
            await self.session.service.close()

    def call(self, fn: Callable[..., R], *args: Any, timeout: Optional[float] = None) -> R:
        """Run ``fn(*args)`` on the session loop and return its result.

        Raises:
            SessionError: If the thread is not running.
            TimeoutError: If the call does not finish within ``timeout``.
        """
        loop = self._loop
        if loop is None or loop.is_closed() or not self._ready.is_set():
            raise SessionError("Session thread is not running")

        async def invoke() -> R:
            return fn(*args)

        future = asyncio.run_coroutine_threadsafe(invoke(), loop)
        return future.result(timeout if timeout is not None else self.session.settings.command_timeout)

    def stop(self, timeout: float = 5.0) -> None:
        """Dispose the session, close the service and join the thread."""
        loop, stop = self._loop, self._stop
        if loop is not None and stop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(stop.set)
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Session thread did not stop gracefully")
