"""Service layer used by the CLI and terminal frontends."""

from __future__ import annotations

import logging
import posixpath
from collections.abc import Callable, Iterable
from concurrent.futures import Future
from pathlib import Path
from typing import Any

from bluetui.core.config import Config, load_config
from bluetui.core.context import Context
from bluetui.core.decoder import decode_media, decode_media_control
from bluetui.core.errors import (
    BusyError,
    DeviceNotReadyError,
    DeviceSelectionError,
    NoAdaptersError,
    TransportError,
    UnsupportedOperationError,
)
from bluetui.core.events import Handler
from bluetui.core.interfaces import (
    ADAPTER_IFACE,
    BLUEZ_SERVICE,
    DEVICE_IFACE,
    MEDIA_CONTROL_IFACE,
    MEDIA_PLAYER_IFACE,
    NETWORK_MANAGER_SERVICE,
    OBEX_SERVICE,
)
from bluetui.core.model import Adapter, Device, MediaState, Transfer, TransferStatus
from bluetui.core.network import NetworkCoordinator
from bluetui.core.operations import Operation
from bluetui.core.transfers import Prompt, ProgressCallback, TransferCoordinator
from bluetui.transports.base import WireValue

LOGGER = logging.getLogger(__name__)

MEDIA_COMMANDS = ("Play", "Pause", "Stop", "Next", "Previous", "FastForward", "Rewind")

DeviceRef = Device | str


class BluetoothService:
    """Front-end facade over the context.

    Reads come straight from the cache. Every action that talks to a daemon
    returns a ``Future`` or an ``Operation`` so the calling thread never
    blocks on the bus.
    """

    def __init__(self, context: Context) -> None:
        self.context = context

    @classmethod
    def open(cls, config: Config | None = None, *, prompt: Prompt | None = None) -> BluetoothService:
        """Connect to the system daemons, sync the cache, and start listening."""
        from bluetui.transports.dbus import DBusTransport

        config = config or load_config()
        warnings: list[str] = []
        bluez = DBusTransport(BLUEZ_SERVICE).connect()

        obex = None
        if config.obex:
            try:
                obex = DBusTransport(OBEX_SERVICE, system=False).connect()
            except TransportError as exc:
                warnings.append(f"File transfer disabled: {exc}")

        nm = None
        if config.network:
            try:
                nm = DBusTransport(NETWORK_MANAGER_SERVICE).connect()
            except TransportError as exc:
                warnings.append(f"Network connections disabled: {exc}")

        context = Context.create(config, bluez=bluez, obex=obex, nm=nm, prompt=prompt)
        context.warnings.extend(warnings)
        for warning in warnings:
            LOGGER.warning(warning)

        service = cls(context)
        service.start()
        if prompt is not None:
            service._register_agents(prompt)
        return service

    @property
    def runtime_warnings(self) -> tuple[str, ...]:
        return tuple(self.context.warnings)

    def _register_agents(self, prompt: Prompt) -> None:
        from bluetui.core.agent import ObexPolicy, PairingPolicy
        from bluetui.transports.agents import register_obex_agent, register_pairing_agent

        pairing = PairingPolicy(
            prompt=prompt,
            set_trusted=lambda path: self._set_property(path, DEVICE_IFACE, "Trusted", WireValue("b", True)),
            describe=self._describe,
        )
        try:
            register_pairing_agent(self.context.bluez, pairing)
        except TransportError as exc:
            self.context.warnings.append(f"Pairing agent not registered: {exc}")
        if self.context.obex is not None and self.context.transfers is not None:
            try:
                register_obex_agent(self.context.obex, ObexPolicy(self.context.transfers))
            except TransportError as exc:
                self.context.warnings.append(f"File receiving disabled: {exc}")

    def _describe(self, device_path: str) -> str:
        device = self.context.store.get_device(device_path)
        return device.display_name if device else device_path

    def start(self) -> Adapter:
        # Subscribe before enumerating; signals sent meanwhile queue up and
        # replay on top of the snapshot.
        subscription = self.context.bluez.subscribe()
        try:
            self._load()
            adapter = self.select_adapter(self.context.config.adapter_path)
        except BaseException:
            subscription.close()
            raise
        self.context.pump.start()
        self.context.pump.attach(subscription, name="bluez")
        return adapter

    def _load(self) -> None:
        self.context.store.load_snapshot(self.context.bluez.managed_objects())

    def refresh(self) -> None:
        """Queue a full resync behind any pending notifications."""

        def resync() -> None:
            self._load()
            if self.context.store.current_adapter is None and self.context.store.list_adapters():
                self.context.store.select_adapter()

        self.context.pump.submit(resync)

    def stop(self) -> None:
        for adapter in self.context.store.list_adapters():
            if not adapter.discovering:
                continue
            try:
                self.context.bluez.call(adapter.path, ADAPTER_IFACE, "StopDiscovery")
            except TransportError as exc:
                LOGGER.debug("Could not stop discovery on %s: %s", adapter.id, exc)
        self.context.pump.stop()
        self.context.executor.shutdown(wait=False)
        for transport in (self.context.bluez, self.context.obex, self.context.nm):
            if transport is not None:
                transport.close()

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        return self.context.events.add(handler)

    @property
    def current_adapter(self) -> Adapter | None:
        return self.context.store.current_adapter

    def select_adapter(self, adapter: str | None = None) -> Adapter:
        """Select by id (``hci0``), by path, or the default when None."""
        if adapter and not adapter.startswith("/"):
            adapter = f"/org/bluez/{adapter}"
        return self.context.store.select_adapter(adapter)

    def list_adapters(self) -> list[Adapter]:
        return self.context.store.list_adapters()

    def list_devices(self, adapter_path: str | None = None) -> list[Device]:
        return self.context.store.list_devices(adapter_path)

    def get_device(self, path: str) -> Device | None:
        return self.context.store.get_device(path)

    def resolve_device(self, hint: str) -> Device:
        """Find a device by path, address, or unique partial name."""
        store = self.context.store
        device = store.get_device(hint) or store.find_device(hint)
        if device is not None:
            return device

        lowered = hint.lower()
        candidates = [
            d
            for adapter in store.list_adapters()
            for d in store.list_devices(adapter.path)
            if lowered in d.display_name.lower() or lowered in d.address.lower()
        ]
        if not candidates:
            raise DeviceSelectionError(f"No device matches '{hint}'. Use 'bluetui devices' to list devices.")
        if len(candidates) > 1:
            names = ", ".join(f"{d.address} ({d.display_name})" for d in candidates)
            raise DeviceSelectionError(f"Device hint '{hint}' is ambiguous: {names}")
        return candidates[0]

    def _device(self, device: DeviceRef) -> Device:
        if isinstance(device, Device):
            return device
        return self.resolve_device(device)

    def _adapter_path(self, adapter_path: str | None) -> str:
        if adapter_path:
            return adapter_path
        adapter = self.context.store.current_adapter
        if adapter is None:
            raise NoAdaptersError("No adapter selected")
        return adapter.path

    def _submit(self, fn: Callable[..., Any], *args: Any) -> Future[Any]:
        return self.context.executor.submit(fn, *args)

    def _set_property(self, path: str, interface: str, name: str, value: WireValue) -> None:
        self.context.bluez.set_property(path, interface, name, value)

    def set_powered(self, enabled: bool, adapter_path: str | None = None) -> Future[Any]:
        path = self._adapter_path(adapter_path)

        def apply() -> None:
            self._set_property(path, ADAPTER_IFACE, "Powered", WireValue("b", enabled))
            self._set_property(path, ADAPTER_IFACE, "Pairable", WireValue("b", enabled))

        return self._submit(apply)

    def set_discoverable(self, enabled: bool, adapter_path: str | None = None) -> Future[Any]:
        path = self._adapter_path(adapter_path)
        return self._submit(self._set_property, path, ADAPTER_IFACE, "Discoverable", WireValue("b", enabled))

    def set_pairable(self, enabled: bool, adapter_path: str | None = None) -> Future[Any]:
        path = self._adapter_path(adapter_path)
        return self._submit(self._set_property, path, ADAPTER_IFACE, "Pairable", WireValue("b", enabled))

    def start_discovery(self, adapter_path: str | None = None) -> Future[Any]:
        path = self._adapter_path(adapter_path)
        return self._submit(self.context.bluez.call, path, ADAPTER_IFACE, "StartDiscovery")

    def stop_discovery(self, adapter_path: str | None = None) -> Future[Any]:
        path = self._adapter_path(adapter_path)
        return self._submit(self.context.bluez.call, path, ADAPTER_IFACE, "StopDiscovery")

    def _compensate(self, action: Callable[[], object], notice: str) -> None:
        try:
            action()
        except TransportError as exc:
            LOGGER.warning("%s, but cleanup failed: %s", notice, exc)
            return
        LOGGER.info(notice)

    def pair(self, device: DeviceRef) -> Operation:
        target = self._device(device)
        bus = self.context.bluez
        return self.context.operations.start(
            lambda _: bus.call(target.path, DEVICE_IFACE, "Pair"),
            lambda: self._compensate(
                lambda: bus.call(target.path, DEVICE_IFACE, "CancelPairing"),
                f"Cancelled pairing with {target.display_name}",
            ),
            name=f"pair {target.display_name}",
        )

    def connect(self, device: DeviceRef) -> Operation:
        target = self._device(device)
        bus = self.context.bluez
        return self.context.operations.start(
            lambda _: bus.call(target.path, DEVICE_IFACE, "Connect"),
            lambda: self._compensate(
                lambda: bus.call(target.path, DEVICE_IFACE, "Disconnect"),
                f"Cancelled connection to {target.display_name}",
            ),
            name=f"connect {target.display_name}",
        )

    def disconnect(self, device: DeviceRef) -> Future[Any]:
        target = self._device(device)
        return self._submit(self.context.bluez.call, target.path, DEVICE_IFACE, "Disconnect")

    def trust(self, device: DeviceRef, trusted: bool | None = None) -> Future[Any]:
        """Set the trusted flag; ``None`` toggles the cached value."""
        target = self._device(device)
        value = (not target.trusted) if trusted is None else trusted
        return self._submit(self._set_property, target.path, DEVICE_IFACE, "Trusted", WireValue("b", value))

    def remove_device(self, device: DeviceRef) -> Future[Any]:
        target = self._device(device)
        adapter_path = posixpath.dirname(target.path)
        return self._submit(
            lambda: self.context.bluez.call(
                adapter_path, ADAPTER_IFACE, "RemoveDevice", target.path, signature="o"
            )
        )

    def _transfers(self) -> TransferCoordinator:
        if self.context.transfers is None:
            raise UnsupportedOperationError("File transfer is not available")
        return self.context.transfers

    def _network(self) -> NetworkCoordinator:
        if self.context.network is None:
            raise UnsupportedOperationError("Network connections are not available")
        return self.context.network

    def send_files(
        self,
        device: DeviceRef,
        files: Iterable[str | Path],
        *,
        on_progress: ProgressCallback | None = None,
    ) -> Operation:
        """Push files to a device over one OBEX session.

        The operation slot is held only while the session is being created;
        the adapter's send lock is held until every file is done.
        """
        transfers = self._transfers()
        target = self._device(device)
        if not (target.paired and target.connected):
            raise DeviceNotReadyError(f"{target.display_name} is not paired and/or connected")
        paths = [Path(f) for f in files]
        locks = self.context.send_locks
        if not locks.try_acquire(target.adapter):
            raise BusyError("A file transfer is already in progress on this adapter")

        def work(operation: Operation) -> list[Transfer]:
            try:
                session = transfers.create_session(target.address)
                if operation.cancelled:
                    transfers.remove_session(session.path)
                    return []
                self.context.operations.release(operation)
                return self._send_all(transfers, session, paths, on_progress)
            finally:
                locks.release(target.adapter)

        try:
            return self.context.operations.start(
                work,
                lambda: LOGGER.info("Cancelled OBEX session creation"),
                name=f"send files to {target.display_name}",
            )
        except BusyError:
            locks.release(target.adapter)
            raise

    def _send_all(
        self,
        transfers: TransferCoordinator,
        session: Any,
        paths: list[Path],
        on_progress: ProgressCallback | None,
    ) -> list[Transfer]:
        results: list[Transfer] = []
        try:
            for path in paths:
                subscription = transfers.subscribe()
                try:
                    transfer = transfers.send_file(session, path)
                except TransportError as exc:
                    subscription.close()
                    LOGGER.error("Could not send %s: %s", path, exc)
                    continue
                final = transfers.watch(transfer.path, on_progress, subscription=subscription)
                results.append(final)
                if final.status is TransferStatus.CANCELLED:
                    break
        finally:
            try:
                transfers.remove_session(session.path)
            except TransportError as exc:
                LOGGER.debug("Session %s already gone: %s", session.path, exc)
        return results

    def suspend_transfer(self, transfer_path: str) -> Future[Transfer]:
        return self._submit(self._transfers().suspend, transfer_path)

    def resume_transfer(self, transfer_path: str) -> Future[Transfer]:
        return self._submit(self._transfers().resume, transfer_path)

    def cancel_transfer(self, transfer_path: str) -> Future[Transfer]:
        return self._submit(self._transfers().cancel, transfer_path)

    def connect_network(self, device: DeviceRef, conn_type: str) -> Operation:
        network = self._network()
        target = self._device(device)
        return self.context.operations.start(
            lambda _: network.connect(target.display_name, conn_type, target.address),
            lambda: self._compensate(
                lambda: network.disconnect(target.address),
                f"Cancelled {conn_type.upper()} connection to {target.display_name}",
            ),
            name=f"{conn_type} connection to {target.display_name}",
        )

    def disconnect_network(self, device: DeviceRef) -> Future[bool]:
        network = self._network()
        target = self._device(device)
        return self._submit(network.disconnect, target.address)

    def _player_path(self, target: Device) -> str:
        control = decode_media_control(self.context.bluez.get_properties(target.path, MEDIA_CONTROL_IFACE))
        if not control.connected or control.player is None:
            raise DeviceNotReadyError(f"No media player is connected on {target.display_name}")
        return control.player

    def media_state(self, device: DeviceRef) -> MediaState:
        """Read the player state directly from the daemon; blocks on the bus."""
        target = self._device(device)
        player = self._player_path(target)
        return decode_media(self.context.bluez.get_properties(player, MEDIA_PLAYER_IFACE))

    def media_command(self, device: DeviceRef, command: str) -> Future[Any]:
        if command not in MEDIA_COMMANDS:
            raise UnsupportedOperationError(f"Unknown media command '{command}'")
        target = self._device(device)

        def run() -> None:
            self.context.bluez.call(self._player_path(target), MEDIA_PLAYER_IFACE, command)

        return self._submit(run)

    def cancel(self) -> Future[Any] | None:
        return self.context.operations.cancel()
