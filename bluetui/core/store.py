"""In-memory cache of adapters and devices."""

from __future__ import annotations

import dataclasses
import logging
import threading
from collections.abc import Mapping
from typing import Any

from bluetui.core.decoder import decode_adapter, decode_device
from bluetui.core.errors import AdapterNotFoundError, DecodeError, NoAdaptersError, StaleEntityError
from bluetui.core.interfaces import ADAPTER_IFACE, BATTERY_IFACE, DEVICE_IFACE
from bluetui.core.model import Adapter, Device

LOGGER = logging.getLogger(__name__)


class StateStore:
    """Thread-safe cache mirroring the Bluetooth daemon's object tree.

    Records are immutable; updates swap a record for a new one, so readers
    always see a consistent entity. Dict insertion order is the display order
    for both maps, and merging an existing entry keeps its position.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._adapters: dict[str, Adapter] = {}
        self._devices: dict[str, Device] = {}
        self._current: str | None = None

    @property
    def current_adapter(self) -> Adapter | None:
        with self._lock:
            if self._current is None:
                return None
            return self._adapters.get(self._current)

    def select_adapter(self, adapter: Adapter | str | None = None) -> Adapter:
        """Make an adapter current.

        With no argument the cached adapter with the lexicographically smallest
        path is chosen. An ``Adapter`` not yet cached is inserted first.
        """
        with self._lock:
            if adapter is None:
                if not self._adapters:
                    raise NoAdaptersError("No Bluetooth adapters found")
                path = min(self._adapters)
            elif isinstance(adapter, Adapter):
                path = adapter.path
                if path not in self._adapters:
                    self._adapters[path] = adapter
            else:
                path = adapter
                if path not in self._adapters:
                    raise AdapterNotFoundError(f"Adapter '{path}' does not exist")
            self._current = path
            return self._adapters[path]

    def list_adapters(self) -> list[Adapter]:
        with self._lock:
            return list(self._adapters.values())

    def list_devices(self, adapter_path: str | None = None) -> list[Device]:
        """Devices of an adapter (default: the current one), remembered first.

        The partition is stable: within each group cache order is preserved.
        """
        with self._lock:
            if adapter_path is None:
                adapter_path = self._current
            if adapter_path is None or adapter_path not in self._adapters:
                return []
            devices = [d for d in self._devices.values() if d.adapter == adapter_path]
        return [d for d in devices if d.remembered] + [d for d in devices if not d.remembered]

    def get_adapter(self, path: str) -> Adapter | None:
        with self._lock:
            return self._adapters.get(path)

    def get_device(self, path: str) -> Device | None:
        with self._lock:
            return self._devices.get(path)

    def find_device(self, address: str, adapter_path: str | None = None) -> Device | None:
        wanted = address.upper()
        with self._lock:
            for device in self._devices.values():
                if device.address.upper() != wanted:
                    continue
                if adapter_path is None or device.adapter == adapter_path:
                    return device
        return None

    def upsert_adapter(self, adapter: Adapter) -> Adapter:
        with self._lock:
            self._adapters[adapter.path] = adapter
        return adapter

    def upsert_device(self, device: Device) -> Device:
        with self._lock:
            self._devices[device.path] = device
        return device

    def merge_adapter(self, path: str, changes: Mapping[str, Any]) -> Adapter:
        with self._lock:
            adapter = self._adapters.get(path)
            if adapter is None:
                raise StaleEntityError(f"Adapter {path} is not tracked")
            adapter = dataclasses.replace(adapter, **changes)
            self._adapters[path] = adapter
            return adapter

    def merge_device(self, path: str, changes: Mapping[str, Any]) -> Device:
        with self._lock:
            device = self._devices.get(path)
            if device is None:
                raise StaleEntityError(f"Device {path} is not tracked")
            device = dataclasses.replace(device, **changes)
            self._devices[path] = device
            return device

    def remove_adapter(self, path: str) -> bool:
        """Drop an adapter and all of its devices; return whether it was current."""
        with self._lock:
            if path not in self._adapters:
                raise StaleEntityError(f"Adapter {path} is not tracked")
            del self._adapters[path]
            for device_path in [p for p, d in self._devices.items() if d.adapter == path]:
                del self._devices[device_path]
            was_current = self._current == path
            if was_current:
                self._current = None
            return was_current

    def remove_device(self, path: str) -> Device:
        with self._lock:
            device = self._devices.pop(path, None)
        if device is None:
            raise StaleEntityError(f"Device {path} is not tracked")
        return device

    def load_snapshot(self, objects: Mapping[str, Mapping[str, Mapping[str, Any]]]) -> list[DecodeError]:
        """Replace the cache from a bulk object enumeration.

        Entities that fail to decode are skipped and returned. Devices whose
        adapter is not in the enumeration are kept but stay out of listings.
        """
        adapters: dict[str, Adapter] = {}
        devices: dict[str, Device] = {}
        skipped: list[DecodeError] = []

        for path, interfaces in objects.items():
            if ADAPTER_IFACE in interfaces:
                try:
                    adapters[path] = decode_adapter(path, interfaces[ADAPTER_IFACE])
                except DecodeError as exc:
                    LOGGER.warning("Skipping adapter: %s", exc)
                    skipped.append(exc)

        for path, interfaces in objects.items():
            if DEVICE_IFACE not in interfaces:
                continue
            try:
                device = decode_device(
                    path,
                    interfaces[DEVICE_IFACE],
                    interfaces.get(BATTERY_IFACE),
                )
            except DecodeError as exc:
                LOGGER.warning("Skipping device: %s", exc)
                skipped.append(exc)
                continue
            devices[path] = device

        with self._lock:
            self._adapters = adapters
            self._devices = devices
            if self._current not in adapters:
                self._current = None
        return skipped

    def snapshot(self) -> tuple[dict[str, Adapter], dict[str, Device]]:
        with self._lock:
            return dict(self._adapters), dict(self._devices)
