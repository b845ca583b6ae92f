"""The XPC wire format: typed objects and the message envelope around them."""

from __future__ import annotations

import enum
import re
import struct
import uuid
from dataclasses import dataclass
from typing import Any

from .xpc_errors import XPCError, XPCParseError

OBJECT_MAGIC = 0x42133742
OBJECT_VERSION = 0x00000005
MESSAGE_MAGIC = 0x29B00B92

_I64_MIN = -(2**63)
_I64_MAX = 2**63 - 1
_U64_MAX = 2**64 - 1

_SIGNED = re.compile(r"[+-]?[0-9]+")
_UNSIGNED = re.compile(r"\+?[0-9]+")


class XPCFlag(enum.IntFlag):
    """Flags carried in the XPC message header."""

    ALWAYS_SET = 0x00000001
    DATA_FLAG = 0x00000100
    WANTING_REPLY = 0x00010000
    INIT_HANDSHAKE = 0x00400000


class XPCType(enum.IntEnum):
    """Type tags of encoded XPC objects."""

    BOOL = 0x00002000
    DICTIONARY = 0x0000F000
    ARRAY = 0x0000E000
    INT64 = 0x00003000
    UINT64 = 0x00004000
    STRING = 0x00009000
    DATA = 0x00008000
    UUID = 0x0000A000


class UInt64(int):
    """An integer carried as an unsigned 64-bit XPC value."""

    __slots__ = ()

    def __new__(cls, value: int = 0) -> "UInt64":
        obj = super().__new__(cls, value)
        if not 0 <= obj <= _U64_MAX:
            raise ValueError(f"{int(obj)} is outside the unsigned 64-bit range")
        return obj

    def __repr__(self) -> str:
        return f"UInt64({int(self)})"


def calculate_padding(length: int) -> int:
    """Number of zero bytes that bring ``length`` up to a multiple of four."""
    return -length % 4


def _pack(fmt: str, value: int) -> bytes:
    try:
        return struct.pack(fmt, value)
    except struct.error as exc:
        raise XPCError(str(exc)) from exc


def _write(obj: Any, out: bytearray) -> None:
    if isinstance(obj, bool):
        out += _pack("<I", XPCType.BOOL)
        # The flag byte is written as 0 for true and 1 for false.
        out.append(0 if obj else 1)
        out += bytes(3)
    elif isinstance(obj, UInt64):
        out += _pack("<I", XPCType.UINT64)
        out += _pack("<Q", obj)
    elif isinstance(obj, int):
        if not _I64_MIN <= obj <= _I64_MAX:
            raise XPCError(f"{obj} is outside the signed 64-bit range")
        out += _pack("<I", XPCType.INT64)
        out += _pack("<q", obj)
    elif isinstance(obj, str):
        raw = obj.encode("utf-8")
        length = len(raw) + 1
        out += _pack("<I", XPCType.STRING)
        out += _pack("<I", length)
        out += raw + b"\x00" + bytes(calculate_padding(length))
    elif isinstance(obj, (bytes, bytearray, memoryview)):
        raw = bytes(obj)
        out += _pack("<I", XPCType.DATA)
        out += _pack("<I", len(raw))
        out += raw + bytes(calculate_padding(len(raw)))
    elif isinstance(obj, uuid.UUID):
        out += _pack("<I", XPCType.UUID)
        out += _pack("<I", 16)
        out += obj.bytes
    elif isinstance(obj, dict):
        out += _pack("<I", XPCType.DICTIONARY)
        out += _pack("<I", 0)
        out += _pack("<I", len(obj))
        for key, value in obj.items():
            if not isinstance(key, str):
                raise XPCError(f"dictionary key {key!r} is not a string")
            raw = key.encode("utf-8")
            out += raw + b"\x00" + bytes(calculate_padding(len(raw) + 1))
            _write(value, out)
    elif isinstance(obj, (list, tuple)):
        out += _pack("<I", XPCType.ARRAY)
        out += _pack("<I", 0)
        out += _pack("<I", len(obj))
        for item in obj:
            _write(item, out)
    else:
        raise XPCError(f"cannot encode {type(obj).__name__} as an XPC object")


def encode_object(obj: Any) -> bytes:
    """Encode an XPC object, preceded by the object magic and version."""
    out = bytearray(_pack("<I", OBJECT_MAGIC) + _pack("<I", OBJECT_VERSION))
    _write(obj, out)
    return bytes(out)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    def read(self, size: int) -> bytes:
        end = self._pos + size
        if end > len(self._data):
            raise XPCError("failed to fill whole buffer")
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def read_until_nul(self) -> bytes:
        index = self._data.find(b"\x00", self._pos)
        end = len(self._data) if index < 0 else index + 1
        chunk = self._data[self._pos:end]
        self._pos = max(self._pos, end)
        return chunk

    def skip(self, size: int) -> None:
        self._pos += size

    def u32(self) -> int:
        return struct.unpack("<I", self.read(4))[0]


def _c_string(raw: bytes) -> str:
    if not raw or raw[-1] != 0:
        raise XPCParseError("data provided is not nul terminated")
    if 0 in raw[:-1]:
        raise XPCParseError("data provided contains an interior nul byte")
    try:
        return raw[:-1].decode("utf-8")
    except UnicodeDecodeError as exc:
        raise XPCParseError(str(exc)) from exc


def _read(reader: _Reader) -> Any:
    tag = reader.u32()
    try:
        kind = XPCType(tag)
    except ValueError:
        raise XPCError("Invalid XPCType") from None

    if kind is XPCType.DICTIONARY:
        reader.u32()
        count = reader.u32()
        result: dict[str, Any] = {}
        for _ in range(count):
            raw = reader.read_until_nul()
            key = _c_string(raw)
            reader.skip(calculate_padding(len(raw)))
            result[key] = _read(reader)
        return result
    if kind is XPCType.ARRAY:
        reader.u32()
        count = reader.u32()
        return [_read(reader) for _ in range(count)]
    if kind is XPCType.INT64:
        return struct.unpack("<q", reader.read(8))[0]
    if kind is XPCType.UINT64:
        return UInt64(struct.unpack("<Q", reader.read(8))[0])
    if kind is XPCType.STRING:
        length = reader.u32()
        text = _c_string(reader.read(length))
        reader.skip(calculate_padding(length))
        return text
    if kind is XPCType.BOOL:
        return reader.read(4)[0] != 0
    if kind is XPCType.DATA:
        length = reader.u32()
        data = reader.read(length)
        reader.skip(calculate_padding(length))
        return data
    return uuid.UUID(bytes=reader.read(16))


def decode_object(data: bytes) -> Any:
    """Decode an XPC object that starts with the object magic and version."""
    data = bytes(data)
    if len(data) < 8:
        raise XPCError("XPC object is shorter than its header")
    magic, version = struct.unpack_from("<II", data)
    if magic != OBJECT_MAGIC:
        raise XPCError("Invalid magic for XPCObject")
    if version != OBJECT_VERSION:
        raise XPCError("Unexpected version for XPCObject")
    return _read(_Reader(data[8:]))


def from_plist(value: Any) -> Any:
    """Convert a property-list value into an XPC object."""
    if isinstance(value, list):
        return [from_plist(item) for item in value]
    if isinstance(value, dict):
        return {key: from_plist(item) for key, item in value.items()}
    if isinstance(value, bool):
        return value
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, int) and not isinstance(value, UInt64):
        if not _I64_MIN <= value <= _I64_MAX:
            raise XPCError(f"{value} does not fit a signed 64-bit integer")
        return int(value)
    if isinstance(value, str):
        return value
    raise XPCError(f"cannot convert {type(value).__name__} to an XPC object")


def to_plist(obj: Any) -> Any:
    """Convert an XPC object into a property-list value."""
    if isinstance(obj, bool):
        return obj
    if isinstance(obj, uuid.UUID):
        return str(obj)
    if isinstance(obj, int):
        return int(obj)
    if isinstance(obj, str):
        return obj
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return bytes(obj)
    if isinstance(obj, (list, tuple)):
        return [to_plist(item) for item in obj]
    if isinstance(obj, dict):
        return {key: to_plist(item) for key, item in obj.items()}
    raise XPCError(f"cannot convert {type(obj).__name__} to a property list")


def as_signed_integer(obj: Any) -> int | None:
    """The value of a signed integer, or of a string holding one; else None."""
    if isinstance(obj, str):
        if _SIGNED.fullmatch(obj):
            number = int(obj)
            if _I64_MIN <= number <= _I64_MAX:
                return number
        return None
    if isinstance(obj, (bool, UInt64)):
        return None
    if isinstance(obj, int):
        return int(obj)
    return None


def as_unsigned_integer(obj: Any) -> int | None:
    """The value of an unsigned integer, or of a string holding one; else None."""
    if isinstance(obj, str):
        if _UNSIGNED.fullmatch(obj):
            number = int(obj)
            if number <= _U64_MAX:
                return number
        return None
    if isinstance(obj, UInt64):
        return int(obj)
    return None


@dataclass
class XPCMessage:
    """An XPC message: header flags, an optional body and its identifier."""

    flags: int = XPCFlag.ALWAYS_SET
    message: Any = None
    message_id: int | None = None

    def __post_init__(self) -> None:
        self.flags = int(self.flags)

    def encode(self, message_id: int) -> bytes:
        """Encode the message with the given identifier."""
        header = _pack("<I", MESSAGE_MAGIC) + _pack("<I", self.flags)
        if self.message is None:
            return header + _pack("<Q", 0) + _pack("<Q", message_id)
        body = encode_object(self.message)
        return header + _pack("<Q", len(body)) + _pack("<Q", message_id) + body


def decode_message(data: bytes) -> XPCMessage:
    """Decode one XPC message from the start of ``data``."""
    data = bytes(data)
    if len(data) < 24:
        raise XPCError("XPCMessage must be at least 24 bytes.")
    magic, flags, body_len, message_id = struct.unpack_from("<IIQQ", data)
    if magic != MESSAGE_MAGIC:
        raise XPCError("XPCMessage magic is invalid.")
    if body_len + 24 > len(data):
        raise XPCError("XPCMessage body length given is incorrect.")
    if body_len == 0:
        return XPCMessage(flags=flags, message=None, message_id=message_id)
    body = decode_object(data[24:24 + body_len])
    return XPCMessage(flags=flags, message=body, message_id=message_id)