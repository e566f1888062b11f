"""Core data models shared by the store, coordinators, service, and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from bluetui.core.interfaces import (
    AUDIO_SINK_UUID,
    AUDIO_SOURCE_UUID,
    AV_REMOTE_TARGET_UUID,
    AV_REMOTE_UUID,
    DUN_UUID,
    NAP_UUID,
    OBEX_PUSH_UUID,
    PANU_UUID,
)

UNKNOWN_ALBUM = "<Unknown Album>"
UNKNOWN_ARTIST = "<Unknown Artist>"

_PHONE_MINOR = {0x01: "Phone", 0x02: "Phone", 0x03: "Phone", 0x05: "Phone", 0x04: "Modem"}
_AUDIO_MINOR = {
    0x01: "Headset",
    0x02: "Headset",
    0x05: "Speakers",
    0x06: "Headphones",
    0x0B: "Video",
    0x0C: "Video",
    0x0D: "Video",
}
_IMAGING_BITS = ((0x80, "Printer"), (0x40, "Scanner"), (0x20, "Camera"), (0x10, "Monitor"))


def device_type(device_class: int) -> str:
    """Map a Bluetooth class of device to a human readable category.

    Follows the major/minor layout used by upower's BlueZ backend.
    """
    major = (device_class & 0x1F00) >> 8
    minor = (device_class & 0xFC) >> 2

    if major == 0x01:
        return "Computer"
    if major == 0x02:
        return _PHONE_MINOR.get(minor, "Unknown")
    if major == 0x03:
        return "Network"
    if major == 0x04:
        return _AUDIO_MINOR.get(minor, "Audio device")
    if major == 0x05:
        peripheral = (device_class & 0xC0) >> 6
        subtype = (device_class & 0x1E) >> 2
        if peripheral == 0x00:
            if subtype in (0x01, 0x02):
                return "Gaming input"
            if subtype == 0x03:
                return "Remote control"
        elif peripheral == 0x01:
            return "Keyboard"
        elif peripheral == 0x02:
            return "Tablet" if subtype == 0x05 else "Mouse"
        return "Unknown"
    if major == 0x06:
        for bit, name in _IMAGING_BITS:
            if device_class & bit:
                return name
        return "Unknown"
    if major == 0x07:
        return "Wearable"
    if major == 0x08:
        return "Toy"
    return "Unknown"


@dataclass(frozen=True)
class Adapter:
    path: str
    address: str
    name: str = ""
    alias: str = ""
    powered: bool = False
    discoverable: bool = False
    pairable: bool = False
    discovering: bool = False

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]


@dataclass(frozen=True)
class Device:
    path: str
    address: str
    adapter: str
    name: str = ""
    alias: str = ""
    address_type: str = ""
    paired: bool = False
    connected: bool = False
    trusted: bool = False
    blocked: bool = False
    bonded: bool = False
    legacy_pairing: bool = False
    rssi: int = 0
    device_class: int = 0
    uuids: tuple[str, ...] = ()
    percentage: int = 0

    @property
    def type(self) -> str:
        return device_type(self.device_class)

    @property
    def display_name(self) -> str:
        return self.alias or self.name or self.address

    @property
    def remembered(self) -> bool:
        """Whether the device sorts ahead of merely discovered devices."""
        return self.paired or self.trusted or self.blocked

    def has_service(self, uuid: str) -> bool:
        return uuid.lower() in (u.lower() for u in self.uuids)

    @property
    def supports_file_transfer(self) -> bool:
        return self.has_service(OBEX_PUSH_UUID)

    @property
    def supports_network(self) -> bool:
        return self.has_service(NAP_UUID) and (
            self.has_service(PANU_UUID) or self.has_service(DUN_UUID)
        )

    @property
    def supports_audio(self) -> bool:
        return self.has_service(AUDIO_SOURCE_UUID) or self.has_service(AUDIO_SINK_UUID)

    @property
    def supports_media_player(self) -> bool:
        return (
            self.has_service(AUDIO_SOURCE_UUID)
            and self.has_service(AV_REMOTE_UUID)
            and self.has_service(AV_REMOTE_TARGET_UUID)
        )


class TransferStatus(str, Enum):
    QUEUED = "queued"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    COMPLETE = "complete"
    ERROR = "error"
    # Local only: the remote side reports a cancelled transfer as an error.
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (TransferStatus.COMPLETE, TransferStatus.ERROR, TransferStatus.CANCELLED)


class TransferDirection(str, Enum):
    SENDING = "sending"
    RECEIVING = "receiving"


@dataclass(frozen=True)
class ObexSession:
    path: str
    destination: str
    root: str = ""
    source: str = ""
    target: str = ""


@dataclass(frozen=True)
class Transfer:
    path: str
    session: str
    status: TransferStatus
    name: str = ""
    type: str = ""
    filename: str = ""
    size: int = 0
    transferred: int = 0
    direction: TransferDirection = TransferDirection.SENDING

    @property
    def progress(self) -> float:
        if self.size <= 0:
            return 0.0
        return min(self.transferred / self.size, 1.0)


@dataclass(frozen=True)
class TrackInfo:
    title: str = ""
    album: str = UNKNOWN_ALBUM
    artist: str = UNKNOWN_ARTIST
    duration: int = 0
    track_number: int = 0
    total_tracks: int = 0


@dataclass(frozen=True)
class MediaState:
    status: str = ""
    position: int = 0
    track: TrackInfo = field(default_factory=TrackInfo)
