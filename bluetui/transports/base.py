"""Transport interfaces."""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

ManagedObjects = Mapping[str, Mapping[str, Mapping[str, Any]]]


@dataclass(frozen=True)
class WireValue:
    """A value tagged with its bus type signature (a variant)."""

    signature: str
    value: Any


@dataclass(frozen=True)
class Notification:
    """A broadcast signal: fully-qualified name, emitting object, arguments."""

    name: str
    path: str
    body: tuple[Any, ...] = ()


class Subscription(Protocol):
    def __iter__(self) -> Iterator[Notification]:
        """Yield notifications until the stream is closed."""

    def close(self) -> None:
        """Stop delivery and end iteration."""


class Transport(Protocol):
    def call(
        self,
        path: str,
        interface: str,
        method: str,
        *args: Any,
        signature: str = "",
    ) -> tuple[Any, ...]:
        """Invoke a remote method and return the reply arguments."""

    def get_properties(self, path: str, interface: str) -> dict[str, Any]:
        """Return all properties of an interface on an object."""

    def set_property(self, path: str, interface: str, name: str, value: WireValue) -> None:
        """Write one property."""

    def managed_objects(self) -> ManagedObjects:
        """Enumerate every object with its interfaces and properties."""

    def subscribe(self) -> Subscription:
        """Open a new stream of broadcast signals."""

    def close(self) -> None:
        """Release the bus connection."""


_END = object()


class QueueSubscription:
    """Notification stream fed from another thread through a queue."""

    def __init__(self, on_close: Callable[[QueueSubscription], None] | None = None) -> None:
        self._queue: queue.Queue[Any] = queue.Queue()
        self._on_close = on_close
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, notification: Notification) -> None:
        if not self._closed:
            self._queue.put(notification)

    def end(self) -> None:
        """Mark the stream closed by the remote side."""
        self._queue.put(_END)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._queue.put(_END)
        if self._on_close is not None:
            self._on_close(self)

    def __iter__(self) -> Iterator[Notification]:
        while True:
            item = self._queue.get()
            if item is _END:
                return
            yield item
