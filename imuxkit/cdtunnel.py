"""Framing for CDTunnel handshake messages: magic, big-endian length, JSON."""

from __future__ import annotations

import json
import struct
from typing import Any

MAGIC = b"CDTunnel"
_LENGTH = struct.Struct(">H")


class CDTunnelError(ValueError):
    """A CDTunnel frame could not be encoded or decoded."""


def decode(data: bytes) -> Any:
    """Parse a CDTunnel frame and return its JSON payload."""
    if data[: len(MAGIC)] != MAGIC:
        raise CDTunnelError("Invalid Magic")
    start = len(MAGIC) + _LENGTH.size
    if len(data) < start:
        raise CDTunnelError("frame is missing its length field")
    (size,) = _LENGTH.unpack_from(data, len(MAGIC))
    content = data[start:start + size]
    if len(content) < size:
        raise CDTunnelError("frame is shorter than its declared length")
    try:
        return json.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CDTunnelError(str(exc)) from exc


def encode(value: Any) -> bytes:
    """Build a CDTunnel frame carrying ``value`` as compact JSON."""
    body = json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    if len(body) > 0xFFFF:
        raise CDTunnelError("payload does not fit in a 16-bit length")
    return MAGIC + _LENGTH.pack(len(body)) + body