"""Command outcomes and session errors.

Conditions the user can run into (starting with nothing selected, recording
while disconnected) are reported as :class:`CommandResult` values. Exceptions
are reserved for programming errors such as using a disposed session.
"""

from __future__ import annotations

from enum import Enum


class CommandResult(str, Enum):
    ACCEPTED = "accepted"
    NOTHING_SELECTED = "nothing_selected"
    NOT_CONNECTED = "not_connected"
    NOT_COLLECTING = "not_collecting"
    NAVIGATION_REJECTED = "navigation_rejected"

    @property
    def accepted(self) -> bool:
        return self is CommandResult.ACCEPTED


class SessionError(RuntimeError):
    """Raised when a session is used outside its lifecycle."""
