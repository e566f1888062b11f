"""Decisions behind the pairing and OBEX agents, independent of the bus."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from bluetui.core.errors import AuthorizationRejectedError
from bluetui.core.transfers import Prompt, TransferCoordinator

LOGGER = logging.getLogger(__name__)

DEFAULT_PIN_CODE = "0000"
DEFAULT_PASSKEY = 1024
AGENT_CAPABILITY = "KeyboardDisplay"


def _reject_prompt(_: str) -> str:
    return "n"


class PairingPolicy:
    """Answers the Bluetooth daemon's pairing requests.

    Confirmed pairings mark the device trusted. Service authorization can be
    answered "a" once to authorize every later request.
    """

    def __init__(
        self,
        *,
        prompt: Prompt | None = None,
        set_trusted: Callable[[str], object] | None = None,
        notify: Callable[[str], object] | None = None,
        describe: Callable[[str], str] | None = None,
    ) -> None:
        self.prompt = prompt or _reject_prompt
        self._set_trusted = set_trusted
        self._notify = notify or LOGGER.info
        self._describe = describe or (lambda path: path)
        self._lock = threading.Lock()
        self._always_authorize = False

    def request_pin_code(self, device_path: str) -> str:
        return DEFAULT_PIN_CODE

    def request_passkey(self, device_path: str) -> int:
        return DEFAULT_PASSKEY

    def display_pin_code(self, device_path: str, pincode: str) -> None:
        self._notify(f"The pincode for {self._describe(device_path)} is {pincode}")

    def display_passkey(self, device_path: str, passkey: int, entered: int) -> None:
        self._notify(f"Passkey for {self._describe(device_path)} is {passkey}, entered {entered}")

    def request_confirmation(self, device_path: str, passkey: int) -> None:
        self._confirm(device_path, f"Confirm passkey {passkey} (y/n)? ")

    def request_authorization(self, device_path: str) -> None:
        self._confirm(device_path, "Confirm pairing (y/n)? ")

    def authorize_service(self, device_path: str, uuid: str) -> None:
        with self._lock:
            if self._always_authorize:
                return
        reply = self.prompt(f"Authorize service {uuid} (y/n/a)? ").strip().lower()
        if reply == "a":
            with self._lock:
                self._always_authorize = True
            return
        if reply != "y":
            raise AuthorizationRejectedError("Cancelled")

    def cancel(self) -> None:
        LOGGER.info("Pairing request cancelled by the remote side")

    def _confirm(self, device_path: str, question: str) -> None:
        if self.prompt(question).strip().lower() != "y":
            raise AuthorizationRejectedError("Cancelled")
        if self._set_trusted is not None:
            self._set_trusted(device_path)


class ObexPolicy:
    """Answers incoming file pushes through the transfer coordinator."""

    def __init__(self, transfers: TransferCoordinator) -> None:
        self.transfers = transfers

    def authorize_push(self, transfer_path: str) -> str:
        return self.transfers.authorize_incoming(transfer_path)

    def cancel(self) -> None:
        LOGGER.info("Incoming transfer request cancelled")
