from __future__ import annotations

from typing import Any

from bluetui.core.errors import TransportCallError
from bluetui.core.interfaces import (
    ADAPTER_IFACE,
    DEVICE_IFACE,
    INTERFACES_ADDED,
    INTERFACES_REMOVED,
    PROPERTIES_CHANGED,
)
from bluetui.transports.base import Notification, QueueSubscription, WireValue


class CountingSubscription(QueueSubscription):
    def __init__(self) -> None:
        super().__init__()
        self.close_calls = 0

    def close(self) -> None:
        self.close_calls += 1
        super().close()


class FakeTransport:
    """In-memory stand-in for a bus connection.

    ``replies`` maps (interface, method) to a value, an exception, or a
    callable receiving (path, *args). ``scripted`` holds notification batches
    handed to the next subscriptions; a batch ending with ``None`` also ends
    the stream.
    """

    def __init__(self, objects: dict[str, Any] | None = None) -> None:
        self.objects: dict[str, Any] = objects or {}
        self.calls: list[tuple[str, str, str, tuple[Any, ...]]] = []
        self.replies: dict[tuple[str, str], Any] = {}
        self.properties: dict[tuple[str, str], dict[str, Any]] = {}
        self.set_calls: list[tuple[str, str, str, WireValue]] = []
        self.subscriptions: list[CountingSubscription] = []
        self.scripted: list[list[Notification | None]] = []
        self.closed = False

    def call(self, path: str, interface: str, method: str, *args: Any, signature: str = "") -> tuple[Any, ...]:
        self.calls.append((path, interface, method, args))
        reply = self.replies.get((interface, method))
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            return reply(path, *args)
        return reply if reply is not None else ()

    def methods(self) -> list[str]:
        return [method for _, _, method, _ in self.calls]

    def get_properties(self, path: str, interface: str) -> dict[str, Any]:
        if (path, interface) in self.properties:
            return dict(self.properties[(path, interface)])
        try:
            return dict(self.objects[path][interface])
        except KeyError:
            raise TransportCallError(f"No {interface} on {path}") from None

    def set_property(self, path: str, interface: str, name: str, value: WireValue) -> None:
        reply = self.replies.get((interface, f"Set{name}"))
        if isinstance(reply, BaseException):
            raise reply
        self.set_calls.append((path, interface, name, value))

    def managed_objects(self) -> dict[str, Any]:
        return self.objects

    def subscribe(self) -> CountingSubscription:
        subscription = CountingSubscription()
        if self.scripted:
            for notification in self.scripted.pop(0):
                if notification is None:
                    subscription.end()
                else:
                    subscription.push(notification)
        self.subscriptions.append(subscription)
        return subscription

    def emit(self, notification: Notification) -> None:
        for subscription in self.subscriptions:
            subscription.push(notification)

    def close(self) -> None:
        self.closed = True


def adapter_props(address: str = "00:11:22:33:44:55", **extra: Any) -> dict[str, Any]:
    return {"Address": WireValue("s", address), **extra}


def device_props(address: str, adapter: str = "/org/bluez/hci0", **extra: Any) -> dict[str, Any]:
    return {
        "Address": WireValue("s", address),
        "Adapter": WireValue("o", adapter),
        **extra,
    }


def changed(path: str, interface: str, props: dict[str, Any]) -> Notification:
    return Notification(PROPERTIES_CHANGED, path, (interface, props, []))


def added(path: str, interfaces: dict[str, dict[str, Any]]) -> Notification:
    return Notification(INTERFACES_ADDED, "/", (path, interfaces))


def removed(path: str, interfaces: list[str]) -> Notification:
    return Notification(INTERFACES_REMOVED, "/", (path, interfaces))


def device_added(path: str, address: str, **extra: Any) -> Notification:
    adapter = path.rsplit("/", 1)[0]
    return added(path, {DEVICE_IFACE: device_props(address, adapter, **extra)})


def adapter_added(path: str, address: str = "00:11:22:33:44:55") -> Notification:
    return added(path, {ADAPTER_IFACE: adapter_props(address)})
