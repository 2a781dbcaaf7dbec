"""Two-screen navigation: scanner and data view."""

from __future__ import annotations

import logging

from .projections import connection_state
from .sensors import ActiveScreen, ConnectionState
from .store import SessionStateStore

logger = logging.getLogger(__name__)


class ScreenRouter:
    """Edge-triggered screen state machine.

    Transitions:
        SCANNER -> DATA_VIEW on each rising edge into ``CONNECTED``.
        DATA_VIEW -> SCANNER on an explicit disconnect from the data view.
        DATA_VIEW -> SCANNER on an unsolicited drop, only when
        ``return_to_scanner_on_drop`` is set.

    Staying connected never re-fires a transition, and any other navigation
    request is rejected.
    """

    def __init__(self, store: SessionStateStore, return_to_scanner_on_drop: bool = False) -> None:
        self._store = store
        self._return_on_drop = return_to_scanner_on_drop
        self._last_state = ConnectionState.DISCONNECTED
        self._disconnect_requested = False

    @property
    def screen(self) -> ActiveScreen:
        return self._store.get("active_screen")

    def on_connection_changed(self, connected: bool, scanning: bool) -> None:
        state = connection_state(connected, scanning)
        previous, self._last_state = self._last_state, state
        if state is previous:
            return

        if state is ConnectionState.CONNECTED:
            self._disconnect_requested = False
            if self.screen is ActiveScreen.SCANNER:
                self._go(ActiveScreen.DATA_VIEW, "device connected")
        elif previous is ConnectionState.CONNECTED:
            if self._disconnect_requested:
                self._disconnect_requested = False
            elif self._return_on_drop and self.screen is ActiveScreen.DATA_VIEW:
                self._go(ActiveScreen.SCANNER, "connection dropped")
            else:
                logger.info("Connection dropped; staying on %s", self.screen.value)

    def on_disconnect_requested(self) -> bool:
        """Leave the data view after the user asked to disconnect.

        Returns:
            True if the router moved to the scanner.
        """
        if self.screen is not ActiveScreen.DATA_VIEW:
            logger.debug("Disconnect requested outside the data view; no navigation")
            return False
        self._disconnect_requested = True
        self._go(ActiveScreen.SCANNER, "disconnect requested")
        return True

    def navigate(self, screen: ActiveScreen) -> bool:
        """Reject direct navigation; screens only change through transitions."""
        if screen is self.screen:
            return True
        logger.warning(
            "Navigation %s -> %s rejected", self.screen.value, screen.value
        )
        return False

    def reset(self) -> None:
        """Return to the scanner, treating a still-open link as being closed."""
        snapshot = self._store.snapshot()
        self._last_state = connection_state(snapshot.connected, snapshot.scanning)
        self._disconnect_requested = self._last_state is ConnectionState.CONNECTED
        self._store.update(active_screen=ActiveScreen.SCANNER)

    def _go(self, screen: ActiveScreen, reason: str) -> None:
        logger.info("Screen %s -> %s (%s)", self.screen.value, screen.value, reason)
        self._store.update(active_screen=screen)
