"""OBEX file transfer sessions, progress tracking, and incoming authorization."""

from __future__ import annotations

import dataclasses
import errno
import logging
import os
import posixpath
import shutil
import threading
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from bluetui.core.decoder import decode_changes, decode_session, decode_transfer
from bluetui.core.errors import (
    AuthorizationRejectedError,
    BusyError,
    StaleEntityError,
    TransferError,
    TransportError,
    UnsupportedOperationError,
)
from bluetui.core.interfaces import (
    OBEX_CLIENT_IFACE,
    OBEX_OBJECT_PUSH_IFACE,
    OBEX_ROOT_PATH,
    OBEX_SESSION_IFACE,
    OBEX_TRANSFER_IFACE,
    PROPERTIES_CHANGED,
)
from bluetui.core.model import ObexSession, Transfer, TransferDirection, TransferStatus
from bluetui.core.operations import AdapterLocks
from bluetui.transports.base import Subscription, Transport, WireValue

LOGGER = logging.getLogger(__name__)

Prompt = Callable[[str], str]
ProgressCallback = Callable[[Transfer], object]


def default_receive_dir() -> Path:
    return Path.home() / "bluetui"


class _Watch:
    """Owns one transfer's subscription and closes it exactly once."""

    def __init__(self, subscription: Subscription) -> None:
        self.subscription = subscription
        self._lock = threading.Lock()
        self._released = False

    def release(self) -> bool:
        with self._lock:
            if self._released:
                return False
            self._released = True
        self.subscription.close()
        return True


class TransferCoordinator:
    def __init__(
        self,
        transport: Transport,
        *,
        receive_dir: Path | None = None,
        prompt: Prompt | None = None,
        locks: AdapterLocks | None = None,
        current_adapter: Callable[[], str | None] | None = None,
    ) -> None:
        self._transport = transport
        self.receive_dir = receive_dir or default_receive_dir()
        self.prompt = prompt
        self._locks = locks or AdapterLocks()
        self._current_adapter = current_adapter or (lambda: None)
        self._lock = threading.Lock()
        self._sessions: dict[str, ObexSession] = {}
        self._transfers: dict[str, Transfer] = {}
        self._watches: dict[str, _Watch] = {}
        self._accept_lock = threading.Lock()
        self._always_accept: set[str] = set()

    def create_session(self, address: str) -> ObexSession:
        (path,) = self._transport.call(
            OBEX_ROOT_PATH,
            OBEX_CLIENT_IFACE,
            "CreateSession",
            address,
            {"Target": WireValue("s", "opp")},
            signature="sa{sv}",
        )
        session = decode_session(path, self._transport.get_properties(path, OBEX_SESSION_IFACE))
        with self._lock:
            self._sessions[path] = session
        LOGGER.info("Created OBEX session %s with %s", path, address)
        return session

    def remove_session(self, session_path: str) -> None:
        with self._lock:
            self._sessions.pop(session_path, None)
        self._transport.call(
            OBEX_ROOT_PATH,
            OBEX_CLIENT_IFACE,
            "RemoveSession",
            session_path,
            signature="o",
        )

    def send_file(self, session: ObexSession, file_path: str | Path) -> Transfer:
        path, props = self._transport.call(
            session.path,
            OBEX_OBJECT_PUSH_IFACE,
            "SendFile",
            str(file_path),
            signature="s",
        )
        transfer = decode_transfer(path, props, TransferDirection.SENDING)
        with self._lock:
            self._transfers[path] = transfer
        return transfer

    def get(self, transfer_path: str) -> Transfer | None:
        with self._lock:
            return self._transfers.get(transfer_path)

    def list_transfers(self) -> list[Transfer]:
        with self._lock:
            return list(self._transfers.values())

    def is_always_accepted(self, address: str) -> bool:
        with self._accept_lock:
            return address.upper() in self._always_accept

    def always_accept(self, address: str) -> None:
        with self._accept_lock:
            self._always_accept.add(address.upper())

    def authorize_incoming(self, transfer_path: str, session_path: str | None = None) -> str:
        """Decide on an incoming push and return the path it is staged at.

        Blocks on the prompt unless the sender was previously accepted with
        "always". Once accepted, the transfer is watched on a background
        thread that moves the file into the receive directory, removes the
        session, and releases the adapter's send lock.
        ``session_path`` overrides the transfer's own Session property.
        """
        adapter_path = self._current_adapter() or ""
        if not self._locks.try_acquire(adapter_path):
            raise BusyError("Operation in progress")

        try:
            transfer, session = self._incoming(transfer_path, session_path)
            staged = posixpath.join(session.root, transfer.name)

            if not self.is_always_accepted(session.destination):
                answer = self._ask(f"Accept file {transfer.name} (y/n/a)? ").strip().lower()
                if answer == "a":
                    self.always_accept(session.destination)
                elif answer != "y":
                    raise AuthorizationRejectedError("Cancelled")

            transfer = dataclasses.replace(transfer, filename=staged)
            with self._lock:
                self._sessions[session.path] = session
                self._transfers[transfer.path] = transfer
            subscription = self._transport.subscribe()
        except BaseException:
            self._locks.release(adapter_path)
            raise

        threading.Thread(
            target=self._receive,
            args=(transfer.path, session.path, adapter_path, subscription),
            name="bluetui-receive",
            daemon=True,
        ).start()
        return staged

    def _ask(self, question: str) -> str:
        if self.prompt is None:
            return "n"
        return self.prompt(question)

    def _incoming(self, transfer_path: str, session_path: str | None) -> tuple[Transfer, ObexSession]:
        objects = self._transport.managed_objects()
        transfer_props = objects.get(transfer_path, {}).get(OBEX_TRANSFER_IFACE)
        if transfer_props is None:
            raise StaleEntityError(f"Transfer {transfer_path} does not exist")
        transfer = decode_transfer(transfer_path, transfer_props, TransferDirection.RECEIVING)
        if transfer.status is TransferStatus.ERROR:
            raise AuthorizationRejectedError("Transfer error")

        session_path = session_path or transfer.session
        session_props = objects.get(session_path, {}).get(OBEX_SESSION_IFACE)
        if session_props is None:
            raise StaleEntityError(f"Session {session_path} does not exist")
        transfer = dataclasses.replace(transfer, session=session_path)
        return transfer, decode_session(session_path, session_props)

    def _receive(
        self,
        transfer_path: str,
        session_path: str,
        adapter_path: str,
        subscription: Subscription,
    ) -> None:
        try:
            self.watch(transfer_path, subscription=subscription)
        except TransferError as exc:
            LOGGER.error("Could not save received file: %s", exc)
        finally:
            self._locks.release(adapter_path)
            try:
                self.remove_session(session_path)
            except TransportError as exc:
                LOGGER.debug("Session %s already gone: %s", session_path, exc)

    def _require(self, transfer_path: str, action: str) -> Transfer:
        transfer = self.get(transfer_path)
        if transfer is None:
            raise StaleEntityError(f"Transfer {transfer_path} is not tracked")
        if transfer.direction is TransferDirection.RECEIVING:
            raise UnsupportedOperationError(f"Cannot {action} a receiving transfer")
        return transfer

    def _set_status(self, transfer_path: str, status: TransferStatus) -> Transfer | None:
        with self._lock:
            transfer = self._transfers.get(transfer_path)
            if transfer is None:
                return None
            transfer = dataclasses.replace(transfer, status=status)
            self._transfers[transfer_path] = transfer
            return transfer

    def suspend(self, transfer_path: str) -> Transfer:
        transfer = self._require(transfer_path, "suspend")
        if transfer.status is not TransferStatus.ACTIVE:
            raise UnsupportedOperationError(f"Cannot suspend a {transfer.status.value} transfer")
        self._transport.call(transfer_path, OBEX_TRANSFER_IFACE, "Suspend")
        return self._set_status(transfer_path, TransferStatus.SUSPENDED) or transfer

    def resume(self, transfer_path: str) -> Transfer:
        transfer = self._require(transfer_path, "resume")
        if transfer.status is not TransferStatus.SUSPENDED:
            raise UnsupportedOperationError(f"Cannot resume a {transfer.status.value} transfer")
        self._transport.call(transfer_path, OBEX_TRANSFER_IFACE, "Resume")
        return self._set_status(transfer_path, TransferStatus.ACTIVE) or transfer

    def cancel(self, transfer_path: str) -> Transfer:
        transfer = self._require(transfer_path, "cancel")
        if transfer.status.terminal:
            raise UnsupportedOperationError(f"Cannot cancel a {transfer.status.value} transfer")
        self._transport.call(transfer_path, OBEX_TRANSFER_IFACE, "Cancel")
        cancelled = self._set_status(transfer_path, TransferStatus.CANCELLED) or transfer
        with self._lock:
            watch = self._watches.get(transfer_path)
        if watch is not None:
            watch.release()
        return cancelled

    def apply_update(self, transfer_path: str, props: dict[str, Any]) -> Transfer | None:
        """Merge remote property changes; a terminal status is never overwritten."""
        changes = decode_changes(OBEX_TRANSFER_IFACE, props)
        with self._lock:
            transfer = self._transfers.get(transfer_path)
            if transfer is None or transfer.status.terminal:
                return transfer
            transfer = dataclasses.replace(transfer, **changes)
            self._transfers[transfer_path] = transfer
            return transfer

    def subscribe(self) -> Subscription:
        """Open a signal stream ahead of a transfer so no update is missed."""
        return self._transport.subscribe()

    def watch(
        self,
        transfer_path: str,
        on_progress: ProgressCallback | None = None,
        *,
        subscription: Subscription | None = None,
    ) -> Transfer:
        """Follow a transfer until it reaches a terminal status.

        A stream that closes first leaves the transfer in error (unless it was
        cancelled). The subscription is released exactly once whichever way
        the watch ends. Returns the last known record, even when the transfer
        was forgotten while the watch ran.
        """
        watch = _Watch(subscription or self._transport.subscribe())
        with self._lock:
            if transfer_path not in self._transfers:
                watch.release()
                raise StaleEntityError(f"Transfer {transfer_path} is not tracked")
            self._watches[transfer_path] = watch
            last = self._transfers[transfer_path]

        try:
            for notification in watch.subscription:
                if notification.path != transfer_path or notification.name != PROPERTIES_CHANGED:
                    continue
                body = notification.body
                if len(body) < 2 or body[0] != OBEX_TRANSFER_IFACE or not isinstance(body[1], Mapping):
                    continue
                transfer = self.apply_update(transfer_path, body[1])
                if transfer is None:
                    break
                last = transfer
                if on_progress is not None:
                    on_progress(transfer)
                if transfer.status.terminal:
                    break
            else:
                transfer = self.get(transfer_path)
                if transfer is not None and not transfer.status.terminal:
                    transfer = self._set_status(transfer_path, TransferStatus.ERROR)
                    LOGGER.warning("Transfer %s lost its signal stream", transfer_path)
                if transfer is not None:
                    last = transfer
        finally:
            watch.release()
            with self._lock:
                self._watches.pop(transfer_path, None)

        self.finish(transfer_path)
        return last

    def finish(self, transfer_path: str) -> Path | None:
        """Forget a terminal transfer; move a completed received file into place.

        A transfer still in progress is left alone.
        """
        with self._lock:
            transfer = self._transfers.get(transfer_path)
            if transfer is None or not transfer.status.terminal:
                return None
            del self._transfers[transfer_path]
        if transfer.direction is not TransferDirection.RECEIVING or transfer.status is not TransferStatus.COMPLETE:
            return None
        return self._save(transfer)

    def _save(self, transfer: Transfer) -> Path:
        staged = Path(transfer.filename)
        try:
            self.receive_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
            target = self.receive_dir / staged.name
            try:
                os.replace(staged, target)
            except OSError as exc:
                if exc.errno != errno.EXDEV:
                    raise
                shutil.move(str(staged), str(target))
        except OSError as exc:
            raise TransferError(f"Could not move {staged} into {self.receive_dir}: {exc}") from exc
        LOGGER.info("Saved %s", target)
        return target
