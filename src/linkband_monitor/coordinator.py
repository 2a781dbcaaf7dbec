"""Sensor activation coordinator.

Keeps the "started sensors" snapshot and the "activation requested" flag
consistent with the device's collection-active signal and the user's
selection.

The user may change the selection while a collection runs. Such a change only
takes effect on the next start, so the UI has to tell apart:

- sensors in the running collection (``started_sensors``), which show data,
- sensors that are selected but not part of it yet, which show a transient
  "pending" indicator while a start is requested or a collection runs.

``on_collection_active_changed`` is the single writer of ``started_sensors``.
It also runs for transitions that no start request preceded (for example a
session resumed by auto-reconnect), which are treated as valid.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .errors import CommandResult
from .projections import is_pending_activation
from .sensors import SensorKind
from .store import SessionStateStore

if TYPE_CHECKING:
    from .device_service import DeviceSessionService

logger = logging.getLogger(__name__)


class SensorActivationCoordinator:
    """Reconciles sensor selection with the running collection.

    Args:
        store: Session state store holding both inputs and derived flags.
        service: Device session service receiving the sensor commands.
    """

    def __init__(self, store: SessionStateStore, service: "DeviceSessionService") -> None:
        self._store = store
        self._service = service

    def on_selection_changed(self, kind: SensorKind, selected: bool) -> bool:
        """Add or remove ``kind`` from the selection.

        Re-selecting a selected sensor (or deselecting an absent one) changes
        nothing and sends no command.

        Returns:
            True if the selection changed.
        """
        current = self._store.get("selected_sensors")
        if (kind in current) == selected:
            return False
        updated = current | {kind} if selected else current - {kind}
        self._store.update(selected_sensors=frozenset(updated))
        if selected:
            self._service.select_sensor(kind)
        else:
            self._service.deselect_sensor(kind)
        logger.debug("Sensor %s %s", kind.value, "selected" if selected else "deselected")
        return True

    def on_start_requested(self) -> CommandResult:
        """Request activation of the selected sensors.

        Returns:
            ``NOTHING_SELECTED`` without side effects when the selection is
            empty, ``ACCEPTED`` otherwise. Acceptance only means the command
            was sent; the collection starts when the device reports it.
        """
        selection = self._store.get("selected_sensors")
        if not selection:
            logger.info("Start requested with no sensors selected")
            return CommandResult.NOTHING_SELECTED
        self._store.update(activation_requested=True)
        self._service.start_selected_sensors()
        logger.info(
            "Sensor activation requested: %s",
            ", ".join(sorted(k.value for k in selection)),
        )
        return CommandResult.ACCEPTED

    def on_stop_requested(self) -> CommandResult:
        """Request the sensors to stop.

        A pending activation is withdrawn when the collection has not started
        yet; a running collection keeps its flags until the device reports the
        transition.
        """
        if not self._store.get("collection_active"):
            self._store.update(activation_requested=False)
        self._service.stop_selected_sensors()
        logger.info("Sensor stop requested")
        return CommandResult.ACCEPTED

    def on_collection_active_changed(self, active: bool) -> None:
        """Reconcile derived state with a collection-active transition.

        On activation the started snapshot becomes a copy of the selection at
        this instant; on deactivation it is emptied. The activation request is
        cleared in both directions.
        """
        if active:
            started = frozenset(self._store.get("selected_sensors"))
            if not self._store.get("activation_requested"):
                logger.info("Collection became active without a pending start request")
        else:
            started = frozenset()
        self._store.update(started_sensors=started, activation_requested=False)
        logger.info(
            "Collection %s; started sensors: %s",
            "active" if active else "inactive",
            ", ".join(sorted(k.value for k in started)) or "none",
        )

    def is_pending_activation(self, kind: SensorKind) -> bool:
        return is_pending_activation(self._store.snapshot(), kind)
