"""The usbmuxd packet frame: a little-endian header followed by a property list."""

from __future__ import annotations

import logging
import plistlib
import struct
from dataclasses import dataclass, field
from typing import Any

from .plistutil import plist_to_xml_bytes

log = logging.getLogger(__name__)

_HEADER = struct.Struct("<IIII")


class RawPacketError(ValueError):
    """A usbmuxd packet could not be parsed."""


@dataclass
class RawPacket:
    """A usbmuxd packet; ``size`` is computed from the XML body when omitted."""

    plist: dict[str, Any]
    version: int
    message: int
    tag: int
    size: int = field(default=-1)

    def __post_init__(self) -> None:
        if self.size < 0:
            self.size = len(plist_to_xml_bytes(self.plist)) + _HEADER.size

    def to_bytes(self) -> bytes:
        """Serialise the header and the plist body as XML."""
        header = _HEADER.pack(self.size, self.version, self.message, self.tag)
        return header + plist_to_xml_bytes(self.plist)


def parse_raw_packet(data: bytes) -> RawPacket:
    """Parse one packet from the start of ``data``."""
    if len(data) < _HEADER.size:
        log.warning("Not enough data to parse a raw packet header")
        raise RawPacketError("not enough data for a packet header")
    size, version, message, tag = _HEADER.unpack_from(data)
    if size < _HEADER.size:
        raise RawPacketError("packet size is smaller than its header")
    if len(data) < size:
        log.warning("Not enough data to parse a raw packet body")
        raise RawPacketError("not enough data for the packet body")
    try:
        body = plistlib.loads(bytes(data[_HEADER.size:size]))
    except Exception as exc:
        log.warning("Failed to parse packet plist")
        raise RawPacketError("failed to parse packet plist") from exc
    if not isinstance(body, dict):
        raise RawPacketError("packet plist is not a dictionary")
    return RawPacket(plist=body, version=version, message=message, tag=tag, size=size)