import plistlib
import struct

import pytest

from imuxkit.plistutil import plist_to_xml_bytes
from imuxkit.raw_packet import RawPacket, RawPacketError, parse_raw_packet

BODY = {"MessageType": "ListDevices", "kLibUSBMuxVersion": 3}


def test_size_is_header_plus_xml():
    packet = RawPacket(BODY, 1, 8, 0)
    assert packet.size == len(plist_to_xml_bytes(BODY)) + 16
    assert len(packet.to_bytes()) == packet.size


def test_header_layout_is_little_endian():
    packet = RawPacket(BODY, 1, 8, 5)
    raw = packet.to_bytes()
    assert struct.unpack("<IIII", raw[:16]) == (packet.size, 1, 8, 5)
    assert raw[16:] == plist_to_xml_bytes(BODY)


def test_round_trip():
    original = RawPacket(BODY, 1, 8, 42)
    parsed = parse_raw_packet(original.to_bytes())
    assert parsed == original


def test_parse_ignores_trailing_bytes():
    raw = RawPacket(BODY, 1, 8, 0).to_bytes()
    parsed = parse_raw_packet(raw + b"extra")
    assert parsed.plist == BODY


def test_parse_binary_plist_body():
    body = plistlib.dumps(BODY, fmt=plistlib.FMT_BINARY)
    raw = struct.pack("<IIII", len(body) + 16, 0, 8, 1) + body
    parsed = parse_raw_packet(raw)
    assert parsed.plist == BODY
    assert parsed.version == 0


@pytest.mark.parametrize(
    "data",
    [
        b"\x00" * 10,
        struct.pack("<IIII", 100, 1, 8, 0) + b"<plist",
        struct.pack("<IIII", 20, 1, 8, 0) + b"junk",
        struct.pack("<IIII", 4, 1, 8, 0),
    ],
)
def test_parse_errors(data):
    with pytest.raises(RawPacketError):
        parse_raw_packet(data)


def test_parse_rejects_non_dictionary_plist():
    body = plistlib.dumps(["a", "b"])
    raw = struct.pack("<IIII", len(body) + 16, 1, 8, 0) + body
    with pytest.raises(RawPacketError):
        parse_raw_packet(raw)