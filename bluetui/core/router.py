"""Translate raw bus notifications into store updates and domain events."""

from __future__ import annotations

import logging
import posixpath
from collections.abc import Callable, Mapping
from typing import Any

from bluetui.core.decoder import decode_adapter, decode_changes, decode_device, decode_media
from bluetui.core.errors import DecodeError, StaleEntityError
from bluetui.core.events import (
    AdapterChanged,
    AdapterRemoved,
    DeviceChanged,
    DeviceRemoved,
    DevicesAdded,
    Event,
    MediaChanged,
    NoOp,
)
from bluetui.core.interfaces import (
    ADAPTER_IFACE,
    BATTERY_IFACE,
    DEVICE_IFACE,
    INTERFACES_ADDED,
    INTERFACES_REMOVED,
    MEDIA_PLAYER_IFACE,
    PROPERTIES_CHANGED,
)
from bluetui.core.store import StateStore
from bluetui.transports.base import Notification

LOGGER = logging.getLogger(__name__)


class _Malformed(Exception):
    pass


def _body_item(body: tuple[Any, ...], index: int, kind: type | tuple[type, ...]) -> Any:
    if len(body) <= index or not isinstance(body[index], kind):
        raise _Malformed(f"argument {index} is missing or not {kind}")
    return body[index]


class SignalRouter:
    """Applies one notification at a time to the store.

    Every notification yields exactly one event. Unknown, malformed, or stale
    input yields ``NoOp`` instead of raising, so a listener loop is never
    interrupted. Removing the current adapter only reports it: choosing a
    replacement is left to the caller.
    """

    def __init__(self, store: StateStore) -> None:
        self.store = store
        self._handlers: dict[str, Callable[[str, tuple[Any, ...]], Event]] = {
            PROPERTIES_CHANGED: self._properties_changed,
            INTERFACES_ADDED: self._interfaces_added,
            INTERFACES_REMOVED: self._interfaces_removed,
        }

    def dispatch(self, notification: Notification) -> Event:
        handler = self._handlers.get(notification.name)
        if handler is None:
            return NoOp(f"unhandled signal {notification.name}")
        try:
            return handler(notification.path, tuple(notification.body))
        except _Malformed as exc:
            LOGGER.debug("Malformed %s from %s: %s", notification.name, notification.path, exc)
            return NoOp(f"malformed {notification.name}: {exc}")
        except StaleEntityError as exc:
            LOGGER.debug("Dropping stale update: %s", exc)
            return NoOp(str(exc))
        except DecodeError as exc:
            LOGGER.warning("Skipping entity: %s", exc)
            return NoOp(str(exc))

    def _properties_changed(self, path: str, body: tuple[Any, ...]) -> Event:
        interface = _body_item(body, 0, str)
        changed = _body_item(body, 1, Mapping)

        if interface == ADAPTER_IFACE:
            return AdapterChanged(self.store.merge_adapter(path, decode_changes(interface, changed)))
        if interface in (DEVICE_IFACE, BATTERY_IFACE):
            return DeviceChanged(self.store.merge_device(path, decode_changes(interface, changed)))
        if interface == MEDIA_PLAYER_IFACE:
            return MediaChanged(path, decode_media(changed))
        return NoOp(f"ignored properties of {interface}")

    def _interfaces_added(self, _: str, body: tuple[Any, ...]) -> Event:
        path = _body_item(body, 0, str)
        interfaces = _body_item(body, 1, Mapping)

        if ADAPTER_IFACE in interfaces:
            adapter = decode_adapter(path, interfaces[ADAPTER_IFACE])
            return AdapterChanged(self.store.upsert_adapter(adapter))
        if DEVICE_IFACE in interfaces:
            device = decode_device(path, interfaces[DEVICE_IFACE], interfaces.get(BATTERY_IFACE))
            return DevicesAdded(path, (self.store.upsert_device(device),))
        if BATTERY_IFACE in interfaces:
            battery = interfaces[BATTERY_IFACE]
            if not isinstance(battery, Mapping):
                raise _Malformed("battery properties are not a mapping")
            return DeviceChanged(self.store.merge_device(path, decode_changes(BATTERY_IFACE, battery)))
        return NoOp(f"ignored interfaces at {path}")

    def _interfaces_removed(self, _: str, body: tuple[Any, ...]) -> Event:
        path = _body_item(body, 0, str)
        interfaces = _body_item(body, 1, (list, tuple))

        if ADAPTER_IFACE in interfaces:
            return AdapterRemoved(path, self.store.remove_adapter(path))
        if DEVICE_IFACE in interfaces:
            device = self.store.remove_device(path)
            return DeviceRemoved(path, device.adapter or posixpath.dirname(path))
        if BATTERY_IFACE in interfaces:
            return DeviceChanged(self.store.merge_device(path, {"percentage": 0}))
        return NoOp(f"ignored interfaces at {path}")
