"""Stable public API for building tooling on top of bluetui.

This module is the supported integration surface for third-party callers
(terminal UIs, status bars, scripts). Avoid importing from private/internal
modules unless intentionally depending on non-stable internals.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import Future
from pathlib import Path
from typing import Any

from bluetui.core.config import Config, load_config
from bluetui.core.context import Context
from bluetui.core.errors import (
    AdapterNotFoundError,
    AuthorizationRejectedError,
    BluetuiError,
    BusyError,
    ConfigLoadError,
    ConfigValidationError,
    DecodeError,
    DeviceNotReadyError,
    DeviceSelectionError,
    NetworkAlreadyActiveError,
    NetworkError,
    NoAdaptersError,
    StaleEntityError,
    TransferError,
    TransportCallError,
    TransportConnectError,
    TransportError,
    UnsupportedOperationError,
)
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
from bluetui.core.model import (
    Adapter,
    Device,
    MediaState,
    ObexSession,
    TrackInfo,
    Transfer,
    TransferDirection,
    TransferStatus,
)
from bluetui.core.operations import Operation
from bluetui.core.service import BluetoothService
from bluetui.core.transfers import Prompt
from bluetui.transports.base import Notification, Transport, WireValue

__all__ = [
    "AdapterNotFoundError",
    "AuthorizationRejectedError",
    "BluetuiError",
    "BusyError",
    "ConfigLoadError",
    "ConfigValidationError",
    "DecodeError",
    "DeviceNotReadyError",
    "DeviceSelectionError",
    "NetworkAlreadyActiveError",
    "NetworkError",
    "NoAdaptersError",
    "StaleEntityError",
    "TransferError",
    "TransportCallError",
    "TransportConnectError",
    "TransportError",
    "UnsupportedOperationError",
    "AdapterChanged",
    "AdapterRemoved",
    "DeviceChanged",
    "DeviceRemoved",
    "DevicesAdded",
    "Event",
    "MediaChanged",
    "NoOp",
    "Adapter",
    "Device",
    "MediaState",
    "ObexSession",
    "TrackInfo",
    "Transfer",
    "TransferDirection",
    "TransferStatus",
    "Config",
    "Notification",
    "Operation",
    "Transport",
    "WireValue",
    "Client",
]


class Client:
    """Public client for the Bluetooth state cache and its actions.

    A `Client` either wraps transports supplied by the caller or, through
    `Client.system()`, connects to the system daemons. It syncs the cache on
    construction and keeps it current from bus signals until `close()`.
    """

    def __init__(
        self,
        *,
        transport: Transport,
        obex_transport: Transport | None = None,
        network_transport: Transport | None = None,
        config: Config | None = None,
        prompt: Prompt | None = None,
    ) -> None:
        context = Context.create(
            config or Config(),
            bluez=transport,
            obex=obex_transport,
            nm=network_transport,
            prompt=prompt,
        )
        self._service = BluetoothService(context)
        self._service.start()

    @classmethod
    def system(cls, *, config: Config | None = None, prompt: Prompt | None = None) -> Client:
        client = cls.__new__(cls)
        client._service = BluetoothService.open(config or load_config(), prompt=prompt)
        return client

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self._service.stop()

    @property
    def runtime_warnings(self) -> tuple[str, ...]:
        return self._service.runtime_warnings

    @property
    def current_adapter(self) -> Adapter | None:
        return self._service.current_adapter

    def select_adapter(self, adapter: str | None = None) -> Adapter:
        return self._service.select_adapter(adapter)

    def list_adapters(self) -> list[Adapter]:
        return self._service.list_adapters()

    def list_devices(self, adapter_path: str | None = None) -> list[Device]:
        return self._service.list_devices(adapter_path)

    def resolve_device(self, hint: str) -> Device:
        return self._service.resolve_device(hint)

    def subscribe(self, handler: Callable[[Event], object]) -> Callable[[], None]:
        return self._service.subscribe(handler)

    def refresh(self) -> None:
        self._service.refresh()

    def pair(self, device: Device | str) -> Operation:
        return self._service.pair(device)

    def connect(self, device: Device | str) -> Operation:
        return self._service.connect(device)

    def disconnect(self, device: Device | str) -> Future[Any]:
        return self._service.disconnect(device)

    def send_files(
        self,
        device: Device | str,
        files: Iterable[str | Path],
        *,
        on_progress: Callable[[Transfer], object] | None = None,
    ) -> Operation:
        return self._service.send_files(device, files, on_progress=on_progress)

    def media_state(self, device: Device | str) -> MediaState:
        return self._service.media_state(device)

    def cancel(self) -> Future[Any] | None:
        return self._service.cancel()

    @property
    def service(self) -> BluetoothService:
        """The full service, for actions not wrapped here."""
        return self._service
