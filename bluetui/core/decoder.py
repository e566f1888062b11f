"""Decoding of loosely-typed bus property maps into entity records.

Bus values may arrive wrapped with their type signature (dbus-next ``Variant``
or :class:`bluetui.transports.base.WireValue`). Everything is unwrapped first,
then each known field is type-checked. Unknown fields are ignored, ill-typed
optional fields are skipped, and a missing or ill-typed required field raises
:class:`DecodeError`.
"""

from __future__ import annotations

import logging
import posixpath
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from bluetui.core.errors import DecodeError
from bluetui.core.interfaces import (
    ADAPTER_IFACE,
    BATTERY_IFACE,
    DEVICE_IFACE,
    OBEX_SESSION_IFACE,
    OBEX_TRANSFER_IFACE,
)
from bluetui.core.model import (
    UNKNOWN_ALBUM,
    UNKNOWN_ARTIST,
    Adapter,
    Device,
    MediaState,
    ObexSession,
    TrackInfo,
    Transfer,
    TransferDirection,
    TransferStatus,
)

LOGGER = logging.getLogger(__name__)


class _Unusable(Exception):
    pass


def unwrap(value: Any) -> Any:
    """Strip type tags recursively, leaving plain Python values."""
    if hasattr(value, "signature") and hasattr(value, "value"):
        return unwrap(value.value)
    if isinstance(value, Mapping):
        return {key: unwrap(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [unwrap(item) for item in value]
    return value


def _string(value: Any) -> str:
    if not isinstance(value, str):
        raise _Unusable
    return value


def _boolean(value: Any) -> bool:
    if not isinstance(value, bool):
        raise _Unusable
    return value


def _integer(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise _Unusable
    return value


def _unsigned(value: Any) -> int:
    number = _integer(value)
    if number < 0:
        raise _Unusable
    return number


def _percentage(value: Any) -> int:
    number = _unsigned(value)
    if number > 100:
        raise _Unusable
    return number


def _strings(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise _Unusable
    return tuple(_string(item) for item in value)


def _status(value: Any) -> TransferStatus:
    try:
        status = TransferStatus(_string(value))
    except ValueError:
        raise _Unusable from None
    if status is TransferStatus.CANCELLED:
        raise _Unusable
    return status


_Field = tuple[str, Callable[[Any], Any]]

_FIELDS: dict[str, dict[str, _Field]] = {
    ADAPTER_IFACE: {
        "Address": ("address", _string),
        "Name": ("name", _string),
        "Alias": ("alias", _string),
        "Powered": ("powered", _boolean),
        "Discoverable": ("discoverable", _boolean),
        "Pairable": ("pairable", _boolean),
        "Discovering": ("discovering", _boolean),
    },
    DEVICE_IFACE: {
        "Address": ("address", _string),
        "AddressType": ("address_type", _string),
        "Adapter": ("adapter", _string),
        "Name": ("name", _string),
        "Alias": ("alias", _string),
        "Paired": ("paired", _boolean),
        "Connected": ("connected", _boolean),
        "Trusted": ("trusted", _boolean),
        "Blocked": ("blocked", _boolean),
        "Bonded": ("bonded", _boolean),
        "LegacyPairing": ("legacy_pairing", _boolean),
        "RSSI": ("rssi", _integer),
        "Class": ("device_class", _unsigned),
        "UUIDs": ("uuids", _strings),
    },
    BATTERY_IFACE: {
        "Percentage": ("percentage", _percentage),
    },
    OBEX_SESSION_IFACE: {
        "Destination": ("destination", _string),
        "Root": ("root", _string),
        "Source": ("source", _string),
        "Target": ("target", _string),
    },
    OBEX_TRANSFER_IFACE: {
        "Status": ("status", _status),
        "Session": ("session", _string),
        "Name": ("name", _string),
        "Type": ("type", _string),
        "Filename": ("filename", _string),
        "Size": ("size", _unsigned),
        "Transferred": ("transferred", _unsigned),
    },
}


def decode_changes(interface: str, props: Mapping[str, Any]) -> dict[str, Any]:
    """Return record field updates for the recognised, well-typed properties."""
    fields = _FIELDS.get(interface, {})
    changes: dict[str, Any] = {}
    for key, raw in props.items():
        field = fields.get(key)
        if field is None:
            continue
        attr, convert = field
        try:
            changes[attr] = convert(unwrap(raw))
        except _Unusable:
            LOGGER.debug("Ignoring ill-typed %s property %s=%r", interface, key, raw)
    return changes


def _decode_required(
    interface: str,
    path: str,
    props: Mapping[str, Any],
    required: tuple[str, ...],
) -> dict[str, Any]:
    if not isinstance(props, Mapping):
        raise DecodeError(f"{interface} properties for {path} are not a mapping")
    changes = decode_changes(interface, props)
    fields = _FIELDS[interface]
    for key in required:
        if fields[key][0] not in changes:
            raise DecodeError(f"{interface} property '{key}' for {path} is missing or invalid")
    return changes


def decode_adapter(path: str, props: Mapping[str, Any]) -> Adapter:
    return Adapter(path=path, **_decode_required(ADAPTER_IFACE, path, props, ("Address",)))


def decode_device(
    path: str,
    props: Mapping[str, Any],
    battery: Mapping[str, Any] | None = None,
) -> Device:
    """Decode a device, folding in co-located battery properties if given."""
    changes = _decode_required(DEVICE_IFACE, path, props, ("Address",))
    changes.setdefault("adapter", posixpath.dirname(path))
    if battery:
        changes.update(decode_changes(BATTERY_IFACE, battery))
    return Device(path=path, **changes)


def decode_session(path: str, props: Mapping[str, Any]) -> ObexSession:
    return ObexSession(
        path=path,
        **_decode_required(OBEX_SESSION_IFACE, path, props, ("Destination",)),
    )


def decode_transfer(
    path: str,
    props: Mapping[str, Any],
    direction: TransferDirection = TransferDirection.SENDING,
) -> Transfer:
    changes = _decode_required(OBEX_TRANSFER_IFACE, path, props, ("Status",))
    changes.setdefault("session", posixpath.dirname(path))
    return Transfer(path=path, direction=direction, **changes)


def _track(raw: Any) -> TrackInfo:
    if not isinstance(raw, Mapping):
        return TrackInfo()

    def text(key: str, default: str) -> str:
        value = raw.get(key)
        return value if isinstance(value, str) and value else default

    def number(key: str) -> int:
        try:
            return _unsigned(raw.get(key))
        except _Unusable:
            return 0

    return TrackInfo(
        title=text("Title", ""),
        album=text("Album", UNKNOWN_ALBUM),
        artist=text("Artist", UNKNOWN_ARTIST),
        duration=number("Duration"),
        track_number=number("TrackNumber"),
        total_tracks=number("NumberOfTracks"),
    )


def decode_media(props: Mapping[str, Any]) -> MediaState:
    """Decode MediaPlayer1 properties; absent fields take their defaults."""
    plain = unwrap(props) if isinstance(props, Mapping) else {}
    status = plain.get("Status")
    position = plain.get("Position")
    return MediaState(
        status=status if isinstance(status, str) else "",
        position=position if isinstance(position, int) and not isinstance(position, bool) else 0,
        track=_track(plain.get("Track")),
    )


@dataclass(frozen=True)
class MediaControl:
    connected: bool
    player: str | None


def decode_media_control(props: Mapping[str, Any]) -> MediaControl:
    plain = unwrap(props) if isinstance(props, Mapping) else {}
    player = plain.get("Player")
    return MediaControl(
        connected=plain.get("Connected") is True,
        player=player if isinstance(player, str) and player else None,
    )

