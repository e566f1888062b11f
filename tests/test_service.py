from __future__ import annotations

import threading
import time
from collections.abc import Iterator

import pytest

from bluetui.core.config import Config
from bluetui.core.context import Context
from bluetui.core.errors import (
    AdapterNotFoundError,
    BusyError,
    DeviceNotReadyError,
    DeviceSelectionError,
    UnsupportedOperationError,
)
from bluetui.core.events import DeviceChanged, DevicesAdded
from bluetui.core.interfaces import (
    ADAPTER_IFACE,
    DEVICE_IFACE,
    OBEX_CLIENT_IFACE,
    OBEX_OBJECT_PUSH_IFACE,
    OBEX_SESSION_IFACE,
    OBEX_TRANSFER_IFACE,
)
from bluetui.core.model import TransferStatus
from bluetui.core.service import BluetoothService
from bluetui.transports.base import WireValue
from fakes import FakeTransport, adapter_props, changed, device_added, device_props

HCI0 = "/org/bluez/hci0"
HCI1 = "/org/bluez/hci1"
PHONE = f"{HCI0}/dev_AA_BB_CC_DD_EE_01"
SPEAKER = f"{HCI0}/dev_AA_BB_CC_DD_EE_02"
SESSION = "/org/bluez/obex/client/session0"
TRANSFER = f"{SESSION}/transfer0"


def _objects() -> dict:
    return {
        HCI0: {ADAPTER_IFACE: adapter_props("00:00:00:00:00:01", Discovering=True)},
        HCI1: {ADAPTER_IFACE: adapter_props("00:00:00:00:00:02")},
        PHONE: {DEVICE_IFACE: device_props("AA:BB:CC:DD:EE:01", Name="Pixel Phone", Paired=True, Connected=True)},
        SPEAKER: {DEVICE_IFACE: device_props("AA:BB:CC:DD:EE:02", Name="Kitchen Speaker")},
    }


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def bluez() -> FakeTransport:
    return FakeTransport(_objects())


@pytest.fixture
def obex() -> FakeTransport:
    obex = FakeTransport()
    obex.replies[(OBEX_CLIENT_IFACE, "CreateSession")] = (SESSION,)
    obex.properties[(SESSION, OBEX_SESSION_IFACE)] = {"Destination": "AA:BB:CC:DD:EE:01"}
    obex.replies[(OBEX_OBJECT_PUSH_IFACE, "SendFile")] = lambda path, file: (
        TRANSFER,
        {"Status": "queued", "Name": file.rsplit("/", 1)[-1], "Size": WireValue("t", 4)},
    )
    return obex


@pytest.fixture
def service(bluez: FakeTransport, obex: FakeTransport) -> Iterator[BluetoothService]:
    service = BluetoothService(Context.create(Config(), bluez=bluez, obex=obex))
    service.start()
    yield service
    service.stop()


def test_start_loads_cache_and_selects_default_adapter(service: BluetoothService) -> None:
    assert service.current_adapter.path == HCI0
    assert [d.display_name for d in service.list_devices()] == ["Pixel Phone", "Kitchen Speaker"]


class LateSignalTransport(FakeTransport):
    """Emits a device signal while the object tree is being enumerated."""

    def managed_objects(self) -> dict:
        objects = dict(super().managed_objects())
        self.emit(device_added(f"{HCI0}/dev_LATE", "AA:BB:CC:DD:EE:09"))
        return objects


def test_signals_during_enumeration_are_not_lost() -> None:
    bus = LateSignalTransport(_objects())
    service = BluetoothService(Context.create(Config(), bluez=bus))
    service.start()
    try:
        assert _wait_for(lambda: service.get_device(f"{HCI0}/dev_LATE") is not None)
        assert len(bus.subscriptions) == 1
    finally:
        service.stop()


def test_failed_start_closes_subscription(bluez: FakeTransport) -> None:
    service = BluetoothService(Context.create(Config(adapter="hci9"), bluez=bluez))
    with pytest.raises(AdapterNotFoundError):
        service.start()
    assert bluez.subscriptions[0].closed


def test_start_selects_configured_adapter(bluez: FakeTransport) -> None:
    service = BluetoothService(Context.create(Config(adapter="hci1"), bluez=bluez))
    service.start()
    try:
        assert service.current_adapter.path == HCI1
        assert service.list_devices() == []
    finally:
        service.stop()


def test_stop_ends_discovery_and_closes_transports(bluez: FakeTransport, obex: FakeTransport) -> None:
    service = BluetoothService(Context.create(Config(), bluez=bluez, obex=obex))
    service.start()
    service.stop()

    assert bluez.calls == [(HCI0, ADAPTER_IFACE, "StopDiscovery", ())]
    assert bluez.closed and obex.closed
    assert bluez.subscriptions[0].closed


def test_bus_signals_reach_subscribers(service: BluetoothService, bluez: FakeTransport) -> None:
    events: list = []
    unsubscribe = service.subscribe(events.append)

    bluez.emit(changed(PHONE, DEVICE_IFACE, {"Connected": WireValue("b", False)}))
    assert _wait_for(lambda: len(events) == 1)
    assert isinstance(events[0], DeviceChanged)
    assert service.get_device(PHONE).connected is False

    unsubscribe()
    service.context.pump.submit(device_added(f"{HCI0}/dev_new", "AA:BB:CC:DD:EE:03"))
    service.context.pump.wait_idle()
    assert len(events) == 1


def test_refresh_resyncs_in_order(service: BluetoothService, bluez: FakeTransport) -> None:
    events: list = []
    service.subscribe(events.append)
    bluez.objects[f"{HCI0}/dev_new"] = {DEVICE_IFACE: device_props("AA:BB:CC:DD:EE:03")}

    service.context.pump.submit(device_added(f"{HCI0}/dev_other", "AA:BB:CC:DD:EE:04"))
    service.refresh()
    service.context.pump.wait_idle()

    assert isinstance(events[0], DevicesAdded)
    addresses = {d.address for d in service.list_devices()}
    assert "AA:BB:CC:DD:EE:03" in addresses
    assert "AA:BB:CC:DD:EE:04" not in addresses


def test_resolve_device(service: BluetoothService) -> None:
    assert service.resolve_device(PHONE).path == PHONE
    assert service.resolve_device("aa:bb:cc:dd:ee:02").path == SPEAKER
    assert service.resolve_device("kitchen").path == SPEAKER
    with pytest.raises(DeviceSelectionError, match="ambiguous"):
        service.resolve_device("AA:BB")
    with pytest.raises(DeviceSelectionError):
        service.resolve_device("nothing like it")


def test_adapter_actions_set_properties(service: BluetoothService, bluez: FakeTransport) -> None:
    service.set_powered(True).result(timeout=5)
    service.set_discoverable(False, HCI1).result(timeout=5)

    assert bluez.set_calls == [
        (HCI0, ADAPTER_IFACE, "Powered", WireValue("b", True)),
        (HCI0, ADAPTER_IFACE, "Pairable", WireValue("b", True)),
        (HCI1, ADAPTER_IFACE, "Discoverable", WireValue("b", False)),
    ]


def test_trust_toggles_and_remove_targets_adapter(service: BluetoothService, bluez: FakeTransport) -> None:
    service.trust("Kitchen").result(timeout=5)
    assert bluez.set_calls[-1] == (SPEAKER, DEVICE_IFACE, "Trusted", WireValue("b", True))

    service.remove_device(SPEAKER).result(timeout=5)
    assert bluez.calls[-1] == (HCI0, ADAPTER_IFACE, "RemoveDevice", (SPEAKER,))


def test_cancel_pairing_calls_cancel_pairing(service: BluetoothService, bluez: FakeTransport) -> None:
    gate = threading.Event()
    bluez.replies[(DEVICE_IFACE, "Pair")] = lambda path: gate.wait(5)

    operation = service.pair("Kitchen")
    with pytest.raises(BusyError):
        service.connect("Pixel")

    service.cancel().result(timeout=5)
    gate.set()
    operation.result(timeout=5)

    assert operation.cancelled
    assert bluez.methods().count("CancelPairing") == 1
    assert "Disconnect" not in bluez.methods()


def test_send_files_requires_ready_device(service: BluetoothService) -> None:
    with pytest.raises(DeviceNotReadyError):
        service.send_files("Kitchen", ["/tmp/a.txt"])


def test_send_files_without_obex(bluez: FakeTransport) -> None:
    service = BluetoothService(Context.create(Config(), bluez=bluez))
    service.start()
    try:
        with pytest.raises(UnsupportedOperationError):
            service.send_files("Pixel", ["/tmp/a.txt"])
    finally:
        service.stop()


def test_send_files_pushes_over_one_session(service: BluetoothService, obex: FakeTransport) -> None:
    obex.scripted.append([changed(TRANSFER, OBEX_TRANSFER_IFACE, {"Status": "complete", "Transferred": 4})])
    progress: list[int] = []

    operation = service.send_files("Pixel", ["/tmp/a.txt"], on_progress=lambda t: progress.append(t.transferred))
    results = operation.result(timeout=5)

    assert [t.status for t in results] == [TransferStatus.COMPLETE]
    assert progress == [4]
    assert obex.methods() == ["CreateSession", "SendFile", "RemoveSession"]
    assert not service.context.send_locks.locked(HCI0)
    assert service.context.operations.active is None


def test_send_files_is_busy_while_adapter_locked(service: BluetoothService) -> None:
    service.context.send_locks.try_acquire(HCI0)
    with pytest.raises(BusyError):
        service.send_files("Pixel", ["/tmp/a.txt"])
    assert service.context.operations.active is None


def test_media_command_validation(service: BluetoothService) -> None:
    with pytest.raises(UnsupportedOperationError):
        service.media_command("Pixel", "Shuffle")
