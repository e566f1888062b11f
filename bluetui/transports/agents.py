"""Pairing and OBEX agents exported on the bus with dbus-next.

dbus-next reads method signatures from annotations, so this module keeps
them as literal type strings.
"""

import asyncio
import logging

from dbus_next.errors import DBusError
from dbus_next.service import ServiceInterface, method

from bluetui.core.agent import AGENT_CAPABILITY, ObexPolicy, PairingPolicy
from bluetui.core.errors import BluetuiError
from bluetui.core.interfaces import (
    AGENT_IFACE,
    AGENT_MANAGER_IFACE,
    AGENT_PATH,
    BLUEZ_ROOT_PATH,
    OBEX_AGENT_IFACE,
    OBEX_AGENT_MANAGER_IFACE,
    OBEX_AGENT_PATH,
    OBEX_ROOT_PATH,
)
from bluetui.transports.dbus import DBusTransport

LOGGER = logging.getLogger(__name__)

_REJECTED = "org.bluez.Error.Rejected"
_OBEX_REJECTED = "org.bluez.obex.Error.Rejected"


async def _off_loop(error_name, fn, *args):
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, fn, *args)
    except BluetuiError as exc:
        raise DBusError(error_name, str(exc)) from exc


class PairingAgent(ServiceInterface):
    def __init__(self, policy: PairingPolicy) -> None:
        super().__init__(AGENT_IFACE)
        self.policy = policy

    @method()
    def Release(self):
        LOGGER.debug("Pairing agent released")

    @method()
    def RequestPinCode(self, device: "o") -> "s":
        return self.policy.request_pin_code(device)

    @method()
    def RequestPasskey(self, device: "o") -> "u":
        return self.policy.request_passkey(device)

    @method()
    def DisplayPinCode(self, device: "o", pincode: "s"):
        self.policy.display_pin_code(device, pincode)

    @method()
    def DisplayPasskey(self, device: "o", passkey: "u", entered: "q"):
        self.policy.display_passkey(device, passkey, entered)

    @method()
    async def RequestConfirmation(self, device: "o", passkey: "u"):
        await _off_loop(_REJECTED, self.policy.request_confirmation, device, passkey)

    @method()
    async def RequestAuthorization(self, device: "o"):
        await _off_loop(_REJECTED, self.policy.request_authorization, device)

    @method()
    async def AuthorizeService(self, device: "o", uuid: "s"):
        await _off_loop(_REJECTED, self.policy.authorize_service, device, uuid)

    @method()
    def Cancel(self):
        self.policy.cancel()


class ObexAgent(ServiceInterface):
    def __init__(self, policy: ObexPolicy) -> None:
        super().__init__(OBEX_AGENT_IFACE)
        self.policy = policy

    @method()
    def Release(self):
        LOGGER.debug("OBEX agent released")

    @method()
    async def AuthorizePush(self, transfer: "o") -> "s":
        return await _off_loop(_OBEX_REJECTED, self.policy.authorize_push, transfer)

    @method()
    def Cancel(self):
        self.policy.cancel()


def register_pairing_agent(transport: DBusTransport, policy: PairingPolicy) -> PairingAgent:
    agent = PairingAgent(policy)
    transport.export(AGENT_PATH, agent)
    transport.call(
        BLUEZ_ROOT_PATH,
        AGENT_MANAGER_IFACE,
        "RegisterAgent",
        AGENT_PATH,
        AGENT_CAPABILITY,
        signature="os",
    )
    transport.call(BLUEZ_ROOT_PATH, AGENT_MANAGER_IFACE, "RequestDefaultAgent", AGENT_PATH, signature="o")
    return agent


def register_obex_agent(transport: DBusTransport, policy: ObexPolicy) -> ObexAgent:
    agent = ObexAgent(policy)
    transport.export(OBEX_AGENT_PATH, agent)
    transport.call(OBEX_ROOT_PATH, OBEX_AGENT_MANAGER_IFACE, "RegisterAgent", OBEX_AGENT_PATH, signature="o")
    return agent
