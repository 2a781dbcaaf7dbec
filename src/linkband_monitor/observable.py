"""Latest-value observable holders.

:class:`ObservableValue` is the building block for both the device session
service contract and the session state store. It offers:

- a synchronous read of the current value,
- synchronous watchers that receive the current value on registration and
  every subsequent change,
- asynchronous :class:`Subscription` objects backed by a single-slot mailbox,
  so a slow consumer only ever sees the most recent value.

Setting a value equal to the current one is a no-op and notifies nobody.

Thread safety: ``set`` may be called from any thread. Notification happens
while the holder's reentrant lock is held, which keeps watchers of one holder
ordered. Watchers must therefore stay short and must not block on another
thread that sets the same holder; watchers that need to hop threads should
hand the value off (for example with ``loop.call_soon_threadsafe``).
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ObservableValue(Generic[T]):
    """Thread-safe holder of a single value with change notification."""

    def __init__(self, initial: T, name: str = "") -> None:
        self._value = initial
        self._name = name
        self._lock = threading.RLock()
        self._watchers: list[Callable[[T], None]] = []
        self._subscriptions: list[Subscription[T]] = []

    def __repr__(self) -> str:
        return f"ObservableValue({self._name or '?'}={self._value!r})"

    @property
    def name(self) -> str:
        return self._name

    @property
    def value(self) -> T:
        return self._value

    def get(self) -> T:
        return self._value

    def set(self, value: T) -> bool:
        """Replace the value and notify observers.

        Returns:
            True if the value changed, False if it equalled the current value.
        """
        with self._lock:
            if value == self._value:
                return False
            self._value = value
            for sub in list(self._subscriptions):
                sub._offer(value)
            for watcher in list(self._watchers):
                watcher(value)
            return True

    def watch(self, watcher: Callable[[T], None]) -> Callable[[], None]:
        """Register a watcher and immediately deliver the current value.

        Returns:
            A callable that removes the watcher. Calling it twice is harmless.
        """
        with self._lock:
            self._watchers.append(watcher)
            watcher(self._value)

        def unwatch() -> None:
            with self._lock:
                try:
                    self._watchers.remove(watcher)
                except ValueError:
                    pass

        return unwatch

    def subscribe(self) -> "Subscription[T]":
        """Open an async subscription primed with the current value."""
        with self._lock:
            sub = Subscription(self, self._value)
            self._subscriptions.append(sub)
            return sub

    def _unsubscribe(self, sub: "Subscription[T]") -> None:
        with self._lock:
            try:
                self._subscriptions.remove(sub)
            except ValueError:
                pass

    @property
    def observer_count(self) -> int:
        with self._lock:
            return len(self._watchers) + len(self._subscriptions)


def _wake(fut: "asyncio.Future[None]") -> None:
    if not fut.done():
        fut.set_result(None)


class Subscription(Generic[T]):
    """Single-slot mailbox fed by an :class:`ObservableValue`.

    Each new value overwrites any value the consumer has not taken yet. The
    consumer may live on any event loop; wake-ups are delivered with
    ``call_soon_threadsafe`` on the loop that is waiting.

    Usage::

        sub = observable.subscribe()
        async for value in sub:
            render(value)
    """

    def __init__(self, source: ObservableValue[T], initial: T) -> None:
        self._source = source
        self._lock = threading.Lock()
        self._slot: Optional[T] = initial
        self._has_value = True
        self._closed = False
        self._waiter: Optional[tuple[asyncio.AbstractEventLoop, asyncio.Future[None]]] = None

    def _offer(self, value: T) -> None:
        with self._lock:
            if self._closed:
                return
            self._slot = value
            self._has_value = True
            waiter, self._waiter = self._waiter, None
        if waiter is not None:
            loop, fut = waiter
            if not loop.is_closed():
                loop.call_soon_threadsafe(_wake, fut)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return self._has_value

    def take_nowait(self) -> T:
        """Take the pending value without waiting.

        Raises:
            LookupError: If no value is pending.
        """
        with self._lock:
            if not self._has_value:
                raise LookupError("No pending value")
            value = self._slot
            self._slot = None
            self._has_value = False
            return value  # type: ignore[return-value]

    def close(self) -> None:
        """Stop receiving values and release any waiting consumer."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._slot = None
            self._has_value = False
            waiter, self._waiter = self._waiter, None
        self._source._unsubscribe(self)
        if waiter is not None:
            loop, fut = waiter
            if not loop.is_closed():
                loop.call_soon_threadsafe(_wake, fut)

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        while True:
            with self._lock:
                if self._has_value:
                    value = self._slot
                    self._slot = None
                    self._has_value = False
                    return value  # type: ignore[return-value]
                if self._closed:
                    raise StopAsyncIteration
                loop = asyncio.get_running_loop()
                fut: asyncio.Future[None] = loop.create_future()
                self._waiter = (loop, fut)
            await fut
