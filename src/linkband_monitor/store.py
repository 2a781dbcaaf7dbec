"""Session state store.

The store is the single source of truth for everything the UI renders. It
holds the projection of the device session service state together with the
state derived by the activation coordinator and the screen router.

Two views of the same data are kept in step:

1. An immutable :class:`SessionSnapshot` that is replaced wholesale on every
   mutation. Readers on any thread get a consistent picture by taking one
   snapshot and reading all fields from it.
2. One :class:`~linkband_monitor.observable.ObservableValue` per field for
   change notification. Observers receive the current value on registration
   and every later change; writes of an unchanged value are dropped.

Mutations are meant to run on the session's owning event loop only. The
snapshot is swapped before any observer is notified, so an observer that
reads other fields during notification already sees the new state.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from .observable import ObservableValue, Subscription
from .sensors import ActiveScreen, DeviceDescriptor, SensorKind, SensorSample

logger = logging.getLogger(__name__)

SAMPLE_FIELDS: dict[SensorKind, str] = {
    SensorKind.EEG: "eeg_samples",
    SensorKind.PPG: "ppg_samples",
    SensorKind.ACC: "acc_samples",
}


@dataclass(frozen=True)
class SessionSnapshot:
    """Consistent view of the whole session state.

    Attributes mirrored from the device session service:
        connected, connected_device_name, scanning, scanned_devices,
        collection_active, selected_sensors, battery_level, recording,
        auto_reconnect_enabled, eeg_samples, ppg_samples, acc_samples.

    Derived attributes:
        started_sensors: Sensors the running collection started with.
        activation_requested: A start was issued and has not been observed yet.
        active_screen: Screen currently shown.
        indicator_dots: Phase (1-3) of the pending-activation indicator.
    """

    connected: bool = False
    connected_device_name: Optional[str] = None
    scanning: bool = False
    scanned_devices: tuple[DeviceDescriptor, ...] = ()
    collection_active: bool = False
    selected_sensors: frozenset[SensorKind] = frozenset()
    battery_level: Optional[int] = None
    recording: bool = False
    auto_reconnect_enabled: bool = False
    eeg_samples: tuple[SensorSample, ...] = ()
    ppg_samples: tuple[SensorSample, ...] = ()
    acc_samples: tuple[SensorSample, ...] = ()
    started_sensors: frozenset[SensorKind] = frozenset()
    activation_requested: bool = False
    active_screen: ActiveScreen = ActiveScreen.SCANNER
    indicator_dots: int = 1

    def samples_for(self, kind: SensorKind) -> tuple[SensorSample, ...]:
        return getattr(self, SAMPLE_FIELDS[kind])


FIELD_NAMES: tuple[str, ...] = tuple(f.name for f in dataclasses.fields(SessionSnapshot))


class SessionStateStore:
    """Reactive container for :class:`SessionSnapshot` fields.

    Args:
        sample_window: Number of most recent samples kept per sensor.
    """

    def __init__(self, sample_window: int = 3) -> None:
        if sample_window < 1:
            raise ValueError("sample_window must be >= 1")
        self._sample_window = sample_window
        self._snapshot = SessionSnapshot()
        self._fields: dict[str, ObservableValue[Any]] = {
            name: ObservableValue(getattr(self._snapshot, name), name)
            for name in FIELD_NAMES
        }

    @property
    def sample_window(self) -> int:
        return self._sample_window

    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    def get(self, name: str) -> Any:
        self._check(name)
        return getattr(self._snapshot, name)

    def update(self, **changes: Any) -> frozenset[str]:
        """Apply field changes atomically.

        Fields whose new value equals the current one are ignored. Sample
        fields are trimmed to the configured window before comparison.

        Returns:
            Names of the fields that actually changed.

        Raises:
            KeyError: If a name is not a store field.
        """
        for name in changes:
            self._check(name)
        for name in SAMPLE_FIELDS.values():
            if name in changes:
                changes[name] = self._trim(changes[name])

        current = self._snapshot
        changed = {
            name: value
            for name, value in changes.items()
            if getattr(current, name) != value
        }
        if not changed:
            return frozenset()

        self._snapshot = dataclasses.replace(current, **changed)
        # A watcher may write again while we notify; always publish the
        # snapshot's value so observables never lag behind it.
        for name in changed:
            self._fields[name].set(getattr(self._snapshot, name))
        return frozenset(changed)

    def set(self, name: str, value: Any) -> bool:
        return bool(self.update(**{name: value}))

    def reset(self) -> frozenset[str]:
        """Restore every field to its default value."""
        defaults = SessionSnapshot()
        logger.debug("Resetting session state store")
        return self.update(**{name: getattr(defaults, name) for name in FIELD_NAMES})

    def observe(self, name: str) -> ObservableValue[Any]:
        self._check(name)
        return self._fields[name]

    def watch(self, name: str, watcher: Callable[[Any], None]) -> Callable[[], None]:
        """Call ``watcher`` with the current value of ``name`` and on every change."""
        return self.observe(name).watch(watcher)

    def subscribe(self, name: str) -> Subscription[Any]:
        """Async latest-value subscription to one field."""
        return self.observe(name).subscribe()

    def _trim(self, samples: Sequence[SensorSample]) -> tuple[SensorSample, ...]:
        samples = tuple(samples)
        if len(samples) > self._sample_window:
            return samples[-self._sample_window :]
        return samples

    @staticmethod
    def _check(name: str) -> None:
        if name not in FIELD_NAMES:
            raise KeyError(f"Unknown session state field: {name}")
