"""D-Bus transport implementation using dbus-next."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Coroutine
from typing import Any

from bluetui.core.errors import TransportCallError, TransportConnectError
from bluetui.core.interfaces import OBJECT_MANAGER_IFACE, PROPERTIES_IFACE
from bluetui.transports.base import ManagedObjects, Notification, QueueSubscription, WireValue

LOGGER = logging.getLogger(__name__)

_BUS_NAME = "org.freedesktop.DBus"
_BUS_PATH = "/org/freedesktop/DBus"


def _to_wire(value: Any) -> Any:
    from dbus_next import Variant

    if isinstance(value, WireValue):
        return Variant(value.signature, _to_wire(value.value))
    if isinstance(value, dict):
        return {key: _to_wire(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_to_wire(item) for item in value]
    return value


class DBusTransport:
    """Blocking facade over an asyncio dbus-next connection.

    The event loop runs on a private daemon thread; public methods submit
    coroutines to it and wait. Broadcast signals from ``service`` are fanned
    out to every open subscription.
    """

    def __init__(self, service: str, *, system: bool = True) -> None:
        self.service = service
        self.system = system
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._loop.run_forever,
            name=f"dbus-{service}",
            daemon=True,
        )
        self._bus: Any = None
        self._lock = threading.Lock()
        self._subscriptions: list[QueueSubscription] = []

    def _run(self, coro: Coroutine[Any, Any, Any]) -> Any:
        return asyncio.run_coroutine_threadsafe(coro, self._loop).result()

    def connect(self) -> DBusTransport:
        try:
            from dbus_next import BusType
            from dbus_next.aio import MessageBus
        except Exception as exc:  # pragma: no cover - import failure path
            raise TransportConnectError(
                "D-Bus transport requires 'dbus-next'. Install dependency and retry."
            ) from exc

        if not self._thread.is_alive():
            self._thread.start()
        bus_type = BusType.SYSTEM if self.system else BusType.SESSION
        kind = "system" if self.system else "session"

        # MessageBus binds to the running loop when constructed.
        async def _open() -> Any:
            return await MessageBus(bus_type=bus_type).connect()

        try:
            self._bus = self._run(_open())
            self._call(_BUS_NAME, _BUS_PATH, _BUS_NAME, "StartServiceByName", self.service, 0, signature="su")
        except TransportCallError as exc:
            self.close()
            raise TransportConnectError(f"{self.service} is not running on the {kind} bus: {exc}") from exc
        except Exception as exc:
            self.close()
            raise TransportConnectError(f"Could not connect to the {kind} bus: {exc}") from exc

        self._bus.add_message_handler(self._on_message)
        self._call(
            _BUS_NAME,
            _BUS_PATH,
            _BUS_NAME,
            "AddMatch",
            f"type='signal',sender='{self.service}'",
            signature="s",
        )
        asyncio.run_coroutine_threadsafe(self._watch_disconnect(self._bus), self._loop)
        LOGGER.debug("Connected to %s on the %s bus", self.service, kind)
        return self

    @property
    def bus(self) -> Any:
        if self._bus is None:
            raise TransportConnectError(f"Not connected to {self.service}")
        return self._bus

    def _call(
        self,
        destination: str,
        path: str,
        interface: str,
        method: str,
        *args: Any,
        signature: str = "",
    ) -> tuple[Any, ...]:
        from dbus_next import Message, MessageType

        bus = self.bus
        message = Message(
            destination=destination,
            path=path,
            interface=interface,
            member=method,
            signature=signature,
            body=[_to_wire(arg) for arg in args],
        )
        try:
            reply = self._run(bus.call(message))
        except Exception as exc:
            raise TransportCallError(f"{interface}.{method} on {path} failed: {exc}") from exc
        if reply.message_type == MessageType.ERROR:
            detail = reply.body[0] if reply.body else reply.error_name
            raise TransportCallError(
                f"{interface}.{method} on {path} failed: {detail}",
                error_name=reply.error_name,
            )
        return tuple(reply.body)

    def call(
        self,
        path: str,
        interface: str,
        method: str,
        *args: Any,
        signature: str = "",
    ) -> tuple[Any, ...]:
        return self._call(self.service, path, interface, method, *args, signature=signature)

    def get_properties(self, path: str, interface: str) -> dict[str, Any]:
        (props,) = self.call(path, PROPERTIES_IFACE, "GetAll", interface, signature="s")
        return props

    def set_property(self, path: str, interface: str, name: str, value: WireValue) -> None:
        self.call(path, PROPERTIES_IFACE, "Set", interface, name, value, signature="ssv")

    def managed_objects(self) -> ManagedObjects:
        (objects,) = self.call("/", OBJECT_MANAGER_IFACE, "GetManagedObjects")
        return objects

    def subscribe(self) -> QueueSubscription:
        if self._bus is None:
            raise TransportConnectError(f"Not connected to {self.service}")
        subscription = QueueSubscription(on_close=self._forget)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def export(self, path: str, interface: Any) -> None:
        """Publish a dbus-next ``ServiceInterface`` at ``path``."""
        bus = self.bus

        async def _export() -> None:
            bus.export(path, interface)

        self._run(_export())

    def close(self) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.close()
        if self._bus is not None and self._loop.is_running():
            self._loop.call_soon_threadsafe(self._bus.disconnect)
        self._bus = None
        if self._loop.is_running():
            self._loop.call_soon_threadsafe(self._loop.stop)

    def _forget(self, subscription: QueueSubscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def _on_message(self, message: Any) -> bool:
        from dbus_next import MessageType

        if message.message_type != MessageType.SIGNAL or message.interface == _BUS_NAME:
            return False
        notification = Notification(
            name=f"{message.interface}.{message.member}",
            path=message.path,
            body=tuple(message.body),
        )
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.push(notification)
        return False

    async def _watch_disconnect(self, bus: Any) -> None:
        try:
            await bus.wait_for_disconnect()
        except Exception as exc:
            LOGGER.warning("Connection to %s lost: %s", self.service, exc)
        with self._lock:
            subscriptions = list(self._subscriptions)
            self._subscriptions.clear()
        for subscription in subscriptions:
            subscription.end()
