"""Bluetooth tethering (PANU/DUN) through NetworkManager."""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Mapping
from typing import Any

from bluetui.core.decoder import unwrap
from bluetui.core.errors import NetworkAlreadyActiveError, NetworkError, UnsupportedOperationError
from bluetui.core.interfaces import PROPERTIES_CHANGED
from bluetui.transports.base import Transport, WireValue

LOGGER = logging.getLogger(__name__)

NM_PATH = "/org/freedesktop/NetworkManager"
NM_IFACE = "org.freedesktop.NetworkManager"
NM_SETTINGS_PATH = "/org/freedesktop/NetworkManager/Settings"
NM_SETTINGS_IFACE = "org.freedesktop.NetworkManager.Settings"
NM_CONNECTION_IFACE = "org.freedesktop.NetworkManager.Settings.Connection"
NM_ACTIVE_IFACE = "org.freedesktop.NetworkManager.Connection.Active"
NM_DEVICE_IFACE = "org.freedesktop.NetworkManager.Device"

NM_DEVICE_TYPE_BT = 5
ACTIVE_STATE_ACTIVATING = 1
ACTIVE_STATE_ACTIVATED = 2

CONNECTION_TYPES = ("panu", "dun")


def mac_from_bytes(raw: bytes | list[int]) -> str:
    return ":".join(f"{b:02X}" for b in bytes(raw))


def mac_to_bytes(address: str) -> bytes:
    try:
        return bytes(int(part, 16) for part in address.split(":"))
    except ValueError as exc:
        raise NetworkError(f"Invalid Bluetooth address '{address}'") from exc


class NetworkCoordinator:
    """Creates, activates and tears down NetworkManager Bluetooth profiles."""

    def __init__(self, transport: Transport, *, gsm_apn: str = "", gsm_number: str = "") -> None:
        self._transport = transport
        self.gsm_apn = gsm_apn
        self.gsm_number = gsm_number
        self._lock = threading.Lock()
        self._active: dict[str, str] = {}

    def connect(self, name: str, conn_type: str, address: str) -> str:
        """Bring up a tethering connection and return the active connection path."""
        if conn_type not in CONNECTION_TYPES:
            raise UnsupportedOperationError(f"Unknown network type '{conn_type}'")
        address = address.upper()
        if self.is_connection_active(conn_type, address):
            raise NetworkAlreadyActiveError("Connection is already active")

        existing = self._find_existing(conn_type, address)
        if existing is not None:
            connection, device = existing
            if conn_type == "dun":
                self._update_gsm(connection)
            return self._activate(connection, device, address)
        return self._create(name, conn_type, address)

    def disconnect(self, address: str) -> bool:
        with self._lock:
            active = self._active.pop(address.upper(), None)
        if active is None:
            return False
        self._transport.call(NM_PATH, NM_IFACE, "DeactivateConnection", active, signature="o")
        return True

    def is_connection_active(self, conn_type: str, address: str) -> bool:
        manager = self._transport.get_properties(NM_PATH, NM_IFACE)
        for active in unwrap(manager.get("ActiveConnections", [])):
            props = unwrap(self._transport.get_properties(active, NM_ACTIVE_IFACE))
            if props.get("Type") != "bluetooth":
                continue
            if self._matches(props.get("Connection", ""), conn_type, address):
                return True
        return False

    def _settings(self, connection: str) -> dict[str, Any]:
        (settings,) = self._transport.call(connection, NM_CONNECTION_IFACE, "GetSettings")
        return settings

    def _matches(self, connection: str, conn_type: str, address: str) -> bool:
        if not connection:
            return False
        bluetooth = unwrap(self._settings(connection)).get("bluetooth", {})
        bdaddr = bluetooth.get("bdaddr")
        if not isinstance(bdaddr, (bytes, list)):
            return False
        return mac_from_bytes(bdaddr) == address and bluetooth.get("type") == conn_type

    def _find_existing(self, conn_type: str, address: str) -> tuple[str, str] | None:
        manager = self._transport.get_properties(NM_PATH, NM_IFACE)
        for device in unwrap(manager.get("Devices", [])):
            props = unwrap(self._transport.get_properties(device, NM_DEVICE_IFACE))
            if props.get("DeviceType") != NM_DEVICE_TYPE_BT:
                continue
            for connection in props.get("AvailableConnections", []):
                if self._matches(connection, conn_type, address):
                    return connection, device
        return None

    def _update_gsm(self, connection: str) -> None:
        settings = dict(self._settings(connection))
        gsm = settings.get("gsm")
        if not isinstance(gsm, Mapping):
            raise NetworkError("Cannot modify connection settings")
        gsm = dict(gsm)
        gsm["apn"] = WireValue("s", self.gsm_apn)
        gsm["number"] = WireValue("s", self.gsm_number)
        settings["gsm"] = gsm
        settings.pop("ipv6", None)
        self._transport.call(connection, NM_CONNECTION_IFACE, "Update", settings, signature="a{sa{sv}}")

    def _create(self, name: str, conn_type: str, address: str) -> str:
        settings: dict[str, dict[str, WireValue]] = {
            "connection": {
                "id": WireValue("s", f"{name} Access Point ({conn_type.upper()})"),
                "type": WireValue("s", "bluetooth"),
                "uuid": WireValue("s", str(uuid.uuid1())),
                "autoconnect": WireValue("b", False),
            },
            "bluetooth": {
                "bdaddr": WireValue("ay", mac_to_bytes(address)),
                "type": WireValue("s", conn_type),
            },
        }
        if conn_type == "dun":
            settings["gsm"] = {
                "apn": WireValue("s", self.gsm_apn),
                "number": WireValue("s", self.gsm_number),
            }

        (connection,) = self._transport.call(
            NM_SETTINGS_PATH,
            NM_SETTINGS_IFACE,
            "AddConnection",
            settings,
            signature="a{sa{sv}}",
        )
        (device,) = self._transport.call(NM_PATH, NM_IFACE, "GetDeviceByIpIface", address, signature="s")
        return self._activate(connection, device, address)

    def _activate(self, connection: str, device: str, address: str) -> str:
        subscription = self._transport.subscribe()
        try:
            (active,) = self._transport.call(
                NM_PATH,
                NM_IFACE,
                "ActivateConnection",
                connection,
                device,
                "/",
                signature="ooo",
            )
            with self._lock:
                self._active[address] = active

            state = unwrap(self._transport.get_properties(active, NM_ACTIVE_IFACE)).get("State")
            if state in (None, ACTIVE_STATE_ACTIVATING):
                state = self._await_state(subscription, active)
        finally:
            subscription.close()

        if state != ACTIVE_STATE_ACTIVATED:
            with self._lock:
                self._active.pop(address, None)
            raise NetworkError("Connection error occurred")
        LOGGER.info("Activated %s for %s", active, address)
        return active

    @staticmethod
    def _await_state(subscription: Any, active: str) -> int | None:
        for notification in subscription:
            if notification.path != active:
                continue
            state: Any = None
            if notification.name == f"{NM_ACTIVE_IFACE}.StateChanged" and notification.body:
                state = unwrap(notification.body[0])
            elif notification.name == PROPERTIES_CHANGED and len(notification.body) >= 2:
                if notification.body[0] == NM_ACTIVE_IFACE:
                    state = unwrap(notification.body[1]).get("State")
            if state is None or state == ACTIVE_STATE_ACTIVATING:
                continue
            return state
        return None
