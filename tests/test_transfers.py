from __future__ import annotations

import errno
import os
import threading
import time
from pathlib import Path

import pytest

from bluetui.core.errors import (
    AuthorizationRejectedError,
    BusyError,
    StaleEntityError,
    UnsupportedOperationError,
)
from bluetui.core.interfaces import (
    OBEX_CLIENT_IFACE,
    OBEX_OBJECT_PUSH_IFACE,
    OBEX_SESSION_IFACE,
    OBEX_TRANSFER_IFACE,
)
from bluetui.core.model import ObexSession, TransferDirection, TransferStatus
from bluetui.core.operations import AdapterLocks
from bluetui.core.transfers import TransferCoordinator
from bluetui.transports.base import WireValue
from fakes import CountingSubscription, FakeTransport, changed

SESSION = "/org/bluez/obex/client/session0"
TRANSFER = f"{SESSION}/transfer0"
SERVER_SESSION = "/org/bluez/obex/server/session1"
INCOMING = f"{SERVER_SESSION}/transfer1"
HCI0 = "/org/bluez/hci0"


def _sending(obex: FakeTransport, coordinator: TransferCoordinator, status: str = "queued"):
    obex.replies[(OBEX_OBJECT_PUSH_IFACE, "SendFile")] = lambda path, file: (
        TRANSFER,
        {"Status": WireValue("s", status), "Name": "a.txt", "Size": WireValue("t", 100)},
    )
    return coordinator.send_file(ObexSession(path=SESSION, destination="AA"), "/tmp/a.txt")


def test_create_and_remove_session() -> None:
    obex = FakeTransport()
    obex.replies[(OBEX_CLIENT_IFACE, "CreateSession")] = (SESSION,)
    obex.properties[(SESSION, OBEX_SESSION_IFACE)] = {"Destination": "AA:BB", "Target": "opp"}
    coordinator = TransferCoordinator(obex)

    session = coordinator.create_session("AA:BB")
    assert session.destination == "AA:BB"
    _, _, method, args = obex.calls[0]
    assert method == "CreateSession"
    assert args[0] == "AA:BB"
    assert args[1] == {"Target": WireValue("s", "opp")}

    coordinator.remove_session(session.path)
    assert obex.calls[-1][2:] == ("RemoveSession", (SESSION,))


def test_suspend_resume_keep_transferred_count() -> None:
    obex = FakeTransport()
    coordinator = TransferCoordinator(obex)
    _sending(obex, coordinator, "active")
    coordinator.apply_update(TRANSFER, {"Transferred": WireValue("t", 40)})

    assert coordinator.suspend(TRANSFER).status is TransferStatus.SUSPENDED
    with pytest.raises(UnsupportedOperationError):
        coordinator.suspend(TRANSFER)
    resumed = coordinator.resume(TRANSFER)
    assert resumed.status is TransferStatus.ACTIVE
    assert resumed.transferred == 40
    assert obex.methods()[-2:] == ["Suspend", "Resume"]


def test_receiving_transfer_rejects_suspend_resume_cancel(tmp_path: Path) -> None:
    obex = FakeTransport(
        {
            INCOMING: {OBEX_TRANSFER_IFACE: {"Status": "active", "Name": "in.txt", "Session": SERVER_SESSION}},
            SERVER_SESSION: {OBEX_SESSION_IFACE: {"Destination": "AA", "Root": str(tmp_path)}},
        }
    )
    gate = threading.Event()
    obex.subscribe = lambda: _blocking_subscription(gate)
    coordinator = TransferCoordinator(obex, prompt=lambda q: "y", receive_dir=tmp_path / "out")
    coordinator.authorize_incoming(INCOMING)

    for action in (coordinator.suspend, coordinator.resume, coordinator.cancel):
        with pytest.raises(UnsupportedOperationError):
            action(INCOMING)
    assert "Suspend" not in obex.methods()
    gate.set()


def _blocking_subscription(gate: threading.Event):
    subscription = CountingSubscription()
    threading.Thread(target=lambda: (gate.wait(5), subscription.end()), daemon=True).start()
    return subscription


def test_unknown_transfer_is_stale() -> None:
    coordinator = TransferCoordinator(FakeTransport())
    with pytest.raises(StaleEntityError):
        coordinator.suspend("/nope")
    with pytest.raises(StaleEntityError):
        coordinator.watch("/nope")


def test_watch_completes_and_releases_subscription_once() -> None:
    obex = FakeTransport()
    coordinator = TransferCoordinator(obex)
    _sending(obex, coordinator)
    obex.scripted.append(
        [
            changed("/other", OBEX_TRANSFER_IFACE, {"Status": "error"}),
            changed(TRANSFER, OBEX_TRANSFER_IFACE, {"Status": "active"}),
            changed(TRANSFER, OBEX_TRANSFER_IFACE, {"Transferred": WireValue("t", 50)}),
            changed(TRANSFER, OBEX_TRANSFER_IFACE, {"Status": "complete", "Transferred": 100}),
        ]
    )
    seen: list[int] = []

    final = coordinator.watch(TRANSFER, on_progress=lambda t: seen.append(t.transferred))

    assert final.status is TransferStatus.COMPLETE
    assert seen == [0, 50, 100]
    assert obex.subscriptions[0].close_calls == 1
    assert coordinator.get(TRANSFER) is None


def test_watch_treats_closed_stream_as_error() -> None:
    obex = FakeTransport()
    coordinator = TransferCoordinator(obex)
    _sending(obex, coordinator)
    obex.scripted.append([changed(TRANSFER, OBEX_TRANSFER_IFACE, {"Status": "active"}), None])

    final = coordinator.watch(TRANSFER)

    assert final.status is TransferStatus.ERROR
    assert obex.subscriptions[0].close_calls == 1


def test_watch_remote_error_is_terminal() -> None:
    obex = FakeTransport()
    coordinator = TransferCoordinator(obex)
    _sending(obex, coordinator)
    obex.scripted.append([changed(TRANSFER, OBEX_TRANSFER_IFACE, {"Status": "error"})])

    assert coordinator.watch(TRANSFER).status is TransferStatus.ERROR
    assert obex.subscriptions[0].close_calls == 1


def test_cancel_during_watch_releases_once() -> None:
    obex = FakeTransport()
    coordinator = TransferCoordinator(obex)
    _sending(obex, coordinator, "active")
    result: dict[str, object] = {}

    watcher = threading.Thread(target=lambda: result.setdefault("final", coordinator.watch(TRANSFER)))
    watcher.start()
    deadline = time.monotonic() + 5
    while not obex.subscriptions and time.monotonic() < deadline:
        time.sleep(0.01)
    time.sleep(0.05)

    cancelled = coordinator.cancel(TRANSFER)
    watcher.join(5)

    assert cancelled.status is TransferStatus.CANCELLED
    assert result["final"].status is TransferStatus.CANCELLED
    assert obex.subscriptions[0].close_calls == 1
    assert "Cancel" in obex.methods()


def test_finish_moves_completed_received_file(tmp_path: Path) -> None:
    staging = tmp_path / "cache"
    staging.mkdir()
    (staging / "photo.jpg").write_bytes(b"jpeg")
    receive_dir = tmp_path / "received"
    obex = FakeTransport(
        {
            INCOMING: {OBEX_TRANSFER_IFACE: {"Status": "queued", "Name": "photo.jpg", "Session": SERVER_SESSION}},
            SERVER_SESSION: {OBEX_SESSION_IFACE: {"Destination": "AA:BB", "Root": str(staging)}},
        }
    )
    obex.scripted.append([changed(INCOMING, OBEX_TRANSFER_IFACE, {"Status": "complete"})])
    locks = AdapterLocks()
    coordinator = TransferCoordinator(
        obex,
        receive_dir=receive_dir,
        prompt=lambda question: "y",
        locks=locks,
        current_adapter=lambda: HCI0,
    )

    staged = coordinator.authorize_incoming(INCOMING)
    assert staged == str(staging / "photo.jpg")

    deadline = time.monotonic() + 5
    while "RemoveSession" not in obex.methods() and time.monotonic() < deadline:
        time.sleep(0.01)

    assert (receive_dir / "photo.jpg").read_bytes() == b"jpeg"
    assert not (staging / "photo.jpg").exists()
    assert "RemoveSession" in obex.methods()


def test_finish_ignores_transfer_in_progress() -> None:
    obex = FakeTransport()
    coordinator = TransferCoordinator(obex)
    _sending(obex, coordinator, "active")

    assert coordinator.finish(TRANSFER) is None
    assert coordinator.get(TRANSFER).status is TransferStatus.ACTIVE

    subscription = coordinator.subscribe()
    subscription.push(changed(TRANSFER, OBEX_TRANSFER_IFACE, {"Transferred": WireValue("t", 10)}))
    subscription.push(changed(TRANSFER, OBEX_TRANSFER_IFACE, {"Status": "complete"}))
    final = coordinator.watch(TRANSFER, subscription=subscription)

    assert final.status is TransferStatus.COMPLETE
    assert final.transferred == 10
    assert coordinator.get(TRANSFER) is None


def test_watch_survives_transfer_forgotten_mid_stream() -> None:
    obex = FakeTransport()
    coordinator = TransferCoordinator(obex)
    _sending(obex, coordinator, "active")
    obex.scripted.append(
        [
            changed(TRANSFER, OBEX_TRANSFER_IFACE, {"Transferred": WireValue("t", 10)}),
            changed(TRANSFER, OBEX_TRANSFER_IFACE, {"Transferred": WireValue("t", 20)}),
        ]
    )

    def on_progress(transfer) -> None:
        if transfer.transferred == 10:
            coordinator.cancel(TRANSFER)
            coordinator.finish(TRANSFER)

    final = coordinator.watch(TRANSFER, on_progress=on_progress)

    assert final.transferred == 10
    assert coordinator.get(TRANSFER) is None
    assert obex.subscriptions[0].close_calls == 1


def test_received_file_crosses_filesystems(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    staging = tmp_path / "cache"
    staging.mkdir()
    (staging / "photo.jpg").write_bytes(b"jpeg")
    receive_dir = tmp_path / "received"
    obex = FakeTransport(
        {
            INCOMING: {OBEX_TRANSFER_IFACE: {"Status": "queued", "Name": "photo.jpg", "Session": SERVER_SESSION}},
            SERVER_SESSION: {OBEX_SESSION_IFACE: {"Destination": "AA:BB", "Root": str(staging)}},
        }
    )
    obex.scripted.append([changed(INCOMING, OBEX_TRANSFER_IFACE, {"Status": "complete"})])
    replaced: list[tuple] = []

    def cross_device(src, dst) -> None:
        replaced.append((src, dst))
        raise OSError(errno.EXDEV, "Invalid cross-device link")

    monkeypatch.setattr(os, "replace", cross_device)
    coordinator = TransferCoordinator(obex, receive_dir=receive_dir, prompt=lambda question: "y")
    coordinator.authorize_incoming(INCOMING)

    deadline = time.monotonic() + 5
    while "RemoveSession" not in obex.methods() and time.monotonic() < deadline:
        time.sleep(0.01)

    assert len(replaced) == 1
    assert (receive_dir / "photo.jpg").read_bytes() == b"jpeg"
    assert not (staging / "photo.jpg").exists()


def test_sending_transfer_is_not_moved(tmp_path: Path) -> None:
    obex = FakeTransport()
    coordinator = TransferCoordinator(obex, receive_dir=tmp_path / "received")
    _sending(obex, coordinator)
    obex.scripted.append([changed(TRANSFER, OBEX_TRANSFER_IFACE, {"Status": "complete"})])

    coordinator.watch(TRANSFER)
    assert not (tmp_path / "received").exists()


def _incoming_objects(tmp_path: Path, status: str = "queued") -> dict:
    return {
        INCOMING: {OBEX_TRANSFER_IFACE: {"Status": status, "Name": "f.txt", "Session": SERVER_SESSION}},
        SERVER_SESSION: {OBEX_SESSION_IFACE: {"Destination": "AA:BB", "Root": str(tmp_path)}},
    }


def test_authorize_incoming_prompt_answers(tmp_path: Path) -> None:
    questions: list[str] = []
    answers = iter(["n", "a"])

    def prompt(question: str) -> str:
        questions.append(question)
        return next(answers)

    obex = FakeTransport(_incoming_objects(tmp_path))
    obex.scripted.extend([[None], [None]])
    locks = AdapterLocks()
    coordinator = TransferCoordinator(obex, prompt=prompt, locks=locks, receive_dir=tmp_path)

    with pytest.raises(AuthorizationRejectedError):
        coordinator.authorize_incoming(INCOMING)
    assert not locks.locked("")

    coordinator.authorize_incoming(INCOMING)
    assert coordinator.is_always_accepted("aa:bb")

    deadline = time.monotonic() + 5
    while locks.locked("") and time.monotonic() < deadline:
        time.sleep(0.01)
    coordinator.authorize_incoming(INCOMING)
    assert questions == ["Accept file f.txt (y/n/a)? "] * 2


def test_authorize_incoming_busy_and_error_status(tmp_path: Path) -> None:
    locks = AdapterLocks()
    locks.try_acquire(HCI0)
    coordinator = TransferCoordinator(
        FakeTransport(_incoming_objects(tmp_path)),
        prompt=lambda q: "y",
        locks=locks,
        current_adapter=lambda: HCI0,
    )
    with pytest.raises(BusyError):
        coordinator.authorize_incoming(INCOMING)

    failed = TransferCoordinator(FakeTransport(_incoming_objects(tmp_path, "error")), prompt=lambda q: "y")
    with pytest.raises(AuthorizationRejectedError):
        failed.authorize_incoming(INCOMING)


def test_received_transfer_direction(tmp_path: Path) -> None:
    obex = FakeTransport(_incoming_objects(tmp_path))
    gate = threading.Event()
    obex.subscribe = lambda: _blocking_subscription(gate)
    coordinator = TransferCoordinator(obex, prompt=lambda q: "y")
    coordinator.authorize_incoming(INCOMING)

    transfer = coordinator.get(INCOMING)
    assert transfer.direction is TransferDirection.RECEIVING
    assert transfer.filename == str(tmp_path / "f.txt")
    gate.set()


def test_authorize_incoming_with_explicit_session(tmp_path: Path) -> None:
    loose = "/org/bluez/obex/transfer7"
    obex = FakeTransport(
        {
            loose: {OBEX_TRANSFER_IFACE: {"Status": "queued", "Name": "f.txt"}},
            SERVER_SESSION: {OBEX_SESSION_IFACE: {"Destination": "AA:BB", "Root": str(tmp_path)}},
        }
    )
    gate = threading.Event()
    obex.subscribe = lambda: _blocking_subscription(gate)
    coordinator = TransferCoordinator(obex, prompt=lambda q: "y")

    with pytest.raises(StaleEntityError):
        coordinator.authorize_incoming(loose)
    staged = coordinator.authorize_incoming(loose, SERVER_SESSION)

    assert staged == str(tmp_path / "f.txt")
    assert coordinator.get(loose).session == SERVER_SESSION
    gate.set()
