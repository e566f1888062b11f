"""Typed domain events and the source that delivers them to front ends."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Union

from bluetui.core.model import Adapter, Device, MediaState

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdapterChanged:
    adapter: Adapter


@dataclass(frozen=True)
class AdapterRemoved:
    path: str
    was_current: bool


@dataclass(frozen=True)
class DeviceChanged:
    device: Device


@dataclass(frozen=True)
class DevicesAdded:
    path: str
    devices: tuple[Device, ...]


@dataclass(frozen=True)
class DeviceRemoved:
    path: str
    adapter: str


@dataclass(frozen=True)
class MediaChanged:
    path: str
    media: MediaState


@dataclass(frozen=True)
class NoOp:
    reason: str = ""


Event = Union[
    AdapterChanged,
    AdapterRemoved,
    DeviceChanged,
    DevicesAdded,
    DeviceRemoved,
    MediaChanged,
    NoOp,
]

Handler = Callable[[Event], object]


class EventSource:
    """Fan-out of events to registered handlers.

    Handlers run on the firing thread. A handler that raises is logged and
    does not prevent delivery to the others.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: list[Handler] = []

    def add(self, handler: Handler) -> Callable[[], None]:
        with self._lock:
            self._handlers.append(handler)
        return lambda: self.remove(handler)

    def remove(self, handler: Handler) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def fire(self, event: Event) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                LOGGER.exception("Event handler %r failed for %s", handler, type(event).__name__)
