import struct
import uuid

import pytest

from imuxkit.xpc_errors import XPCError, XPCParseError
from imuxkit.xpc_format import (
    UInt64,
    XPCFlag,
    XPCMessage,
    XPCType,
    as_signed_integer,
    as_unsigned_integer,
    calculate_padding,
    decode_message,
    decode_object,
    encode_object,
    from_plist,
    to_plist,
)

HEADER = struct.pack("<II", 0x42133742, 5)


@pytest.mark.parametrize("length", range(0, 17))
def test_padding_aligns_to_four(length):
    pad = calculate_padding(length)
    assert 0 <= pad < 4
    assert (length + pad) % 4 == 0


def test_header_bytes():
    assert encode_object({})[:8] == HEADER


def test_round_trip_of_nested_values():
    value = {
        "Services": {"com.example.svc": {"Port": "49152", "n": -7}},
        "count": UInt64(2**63),
        "blob": b"\x01\x02\x03",
        "list": [1, "two", b""],
    }
    decoded = decode_object(encode_object(value))
    assert decoded == value
    assert isinstance(decoded["count"], UInt64)
    assert not isinstance(decoded["list"][0], UInt64)


def test_encoded_lengths_are_aligned():
    for value in ({"ab": 1}, "abc", b"\x01\x02\x03", [b"x", "yz"]):
        assert len(encode_object(value)) % 4 == 0


def test_string_wire_bytes():
    assert encode_object("abc")[8:] == struct.pack("<II", XPCType.STRING, 4) + b"abc\x00"


def test_bool_wire_bytes():
    assert encode_object(True)[8:] == struct.pack("<I", XPCType.BOOL) + bytes(4)
    assert encode_object(False)[8:] == struct.pack("<I", XPCType.BOOL) + b"\x01" + bytes(3)


def test_bool_decoding():
    assert decode_object(HEADER + struct.pack("<I", XPCType.BOOL) + b"\x01\x00\x00\x00") is True
    assert decode_object(HEADER + struct.pack("<I", XPCType.BOOL) + bytes(4)) is False


def test_uuid_encoding_and_decoding():
    ident = uuid.UUID(int=0x0123456789ABCDEF0123456789ABCDEF)
    assert encode_object(ident)[8:] == struct.pack("<II", XPCType.UUID, 16) + ident.bytes
    assert decode_object(HEADER + struct.pack("<I", XPCType.UUID) + ident.bytes) == ident


def test_invalid_magic():
    with pytest.raises(XPCError, match="Invalid magic"):
        decode_object(struct.pack("<II", 1, 5) + encode_object(1)[8:])


def test_invalid_version():
    with pytest.raises(XPCError, match="Unexpected version"):
        decode_object(struct.pack("<II", 0x42133742, 4) + encode_object(1)[8:])


def test_invalid_type():
    with pytest.raises(XPCError, match="Invalid XPCType"):
        decode_object(HEADER + struct.pack("<I", 0x1234))


def test_truncated_object():
    with pytest.raises(XPCError):
        decode_object(encode_object({"key": "value"})[:-4])


def test_string_without_terminator():
    with pytest.raises(XPCParseError):
        decode_object(HEADER + struct.pack("<II", XPCType.STRING, 3) + b"abc\x00")


def test_out_of_range_integer():
    with pytest.raises(XPCError):
        encode_object(2**63)
    with pytest.raises(ValueError):
        UInt64(-1)


def test_plist_round_trip():
    value = {"a": [1, True, "s"], "b": b"\x00"}
    assert to_plist(from_plist(value)) == value


def test_plist_conversion_errors():
    with pytest.raises(XPCError):
        from_plist(1.5)
    with pytest.raises(XPCError):
        from_plist(2**63)


def test_uuid_to_plist():
    ident = uuid.uuid4()
    assert to_plist(ident) == str(ident)


def test_signed_integer_views():
    assert as_signed_integer("-12") == -12
    assert as_signed_integer(7) == 7
    assert as_signed_integer("12 ") is None
    assert as_signed_integer(UInt64(5)) is None
    assert as_signed_integer(True) is None


def test_unsigned_integer_views():
    assert as_unsigned_integer("+5") == 5
    assert as_unsigned_integer(UInt64(9)) == 9
    assert as_unsigned_integer("-1") is None
    assert as_unsigned_integer(9) is None


def test_flag_combination():
    combined = XPCFlag.INIT_HANDSHAKE | XPCFlag.ALWAYS_SET
    assert int(combined) == 0x00400000 | 0x00000001
    assert XPCMessage(flags=combined).flags == int(combined)


def test_message_round_trip():
    flags = XPCFlag.ALWAYS_SET | XPCFlag.DATA_FLAG
    data = XPCMessage(flags=flags, message={"a": "b"}).encode(7)
    decoded = decode_message(data)
    assert decoded.flags == int(flags)
    assert decoded.message == {"a": "b"}
    assert decoded.message_id == 7


def test_empty_message():
    data = XPCMessage().encode(3)
    assert len(data) == 24
    assert data[:4] == struct.pack("<I", 0x29B00B92)
    decoded = decode_message(data)
    assert decoded.message is None
    assert decoded.flags == XPCFlag.ALWAYS_SET
    assert decoded.message_id == 3


def test_message_too_short():
    with pytest.raises(XPCError, match="at least 24 bytes"):
        decode_message(b"\x00" * 10)


def test_message_bad_magic():
    data = bytearray(XPCMessage().encode(1))
    data[0] ^= 0xFF
    with pytest.raises(XPCError, match="magic is invalid"):
        decode_message(bytes(data))


def test_message_body_length_too_large():
    data = XPCMessage(message={"k": 1}).encode(1)
    with pytest.raises(XPCError, match="body length"):
        decode_message(data[:-4])