import json

import pytest

from imuxkit.cdtunnel import MAGIC, CDTunnelError, decode, encode


def test_round_trip():
    value = {"type": "clientHandshakeRequest", "mtu": 16000}
    assert decode(encode(value)) == value


def test_empty_object_frame():
    assert encode({}) == b"CDTunnel\x00\x02{}"


def test_length_counts_utf8_bytes():
    value = {"name": "caf\u00e9"}
    frame = encode(value)
    body = json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode()
    assert frame[:8] == MAGIC
    assert frame[8:10] == len(body).to_bytes(2, "big")
    assert decode(frame) == value


def test_trailing_bytes_are_ignored():
    value = [1, 2, 3]
    assert decode(encode(value) + b"trailing") == value


def test_bad_magic():
    with pytest.raises(CDTunnelError, match="Invalid Magic"):
        decode(b"XXTunnel\x00\x02{}")


def test_truncated_frame():
    with pytest.raises(CDTunnelError):
        decode(encode({"a": 1})[:-2])


def test_invalid_json():
    with pytest.raises(CDTunnelError):
        decode(MAGIC + b"\x00\x03{{{")


def test_oversized_payload():
    with pytest.raises(CDTunnelError):
        encode("x" * 70000)