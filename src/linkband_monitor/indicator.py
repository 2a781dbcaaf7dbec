"""Periodic tick behind the "Receiving..." indicator."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .store import SessionStateStore

logger = logging.getLogger(__name__)


class PendingIndicator:
    """Cycles ``indicator_dots`` through 1, 2, 3 while the indicator is shown.

    The tick task exists only between :meth:`show` and :meth:`hide`; ``hide``
    cancels it unconditionally and resets the phase.
    """

    def __init__(self, store: SessionStateStore, interval: float = 0.5) -> None:
        self._store = store
        self._interval = interval
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def show(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._tick(), name="pending-indicator"
        )

    def hide(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        self._store.update(indicator_dots=1)

    async def _tick(self) -> None:
        dots = 1
        while True:
            await asyncio.sleep(self._interval)
            dots = dots % 3 + 1
            self._store.update(indicator_dots=dots)
