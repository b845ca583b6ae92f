"""Property-list helpers: XML serialisation and a readable text rendering."""

from __future__ import annotations

import datetime as _dt
import math
import plistlib
from decimal import Decimal
from typing import Any, Mapping

_DATA_PREVIEW = 20


def plist_to_xml_bytes(p: Mapping[str, Any]) -> bytes:
    """Serialise a dictionary as an XML property list, keeping key order."""
    return plistlib.dumps(dict(p), fmt=plistlib.FMT_XML, sort_keys=False)


def pretty_print_plist(p: Any) -> str:
    """Render a property-list value as indented text."""
    return _render(p, 0)


def pretty_print_dictionary(d: Mapping[str, Any]) -> str:
    """Render a top-level dictionary, one entry per line."""
    items = ",\n".join(f"{key}: {_render(value, 2)}" for key, value in d.items())
    return f"{{\n{items}\n}}"


def _format_real(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    if value.is_integer():
        if value == 0 and math.copysign(1.0, value) < 0:
            return "-0"
        return str(int(value))
    return format(Decimal(repr(value)), "f")


def _format_date(value: _dt.datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(_dt.timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def _format_data(data: bytes) -> str:
    preview = " ".join(f"{byte:02X}" for byte in data[:_DATA_PREVIEW])
    if len(data) > _DATA_PREVIEW:
        return f"Data({preview}... Len: {len(data)})"
    return f"Data({preview} Len: {len(data)})"


def _render(value: Any, indentation: int) -> str:
    indent = " " * indentation
    inner = " " * (indentation + 2)
    if isinstance(value, (list, tuple)):
        items = ",\n".join(f"{inner}{_render(v, indentation + 2)}" for v in value)
        return f"[\n{items}\n{indent}]"
    if isinstance(value, Mapping):
        items = ",\n".join(
            f"{inner}{key}: {_render(v, indentation + 2)}" for key, v in value.items()
        )
        return f"{{\n{items}\n{indent}}}"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (bytes, bytearray)):
        return _format_data(bytes(value))
    if isinstance(value, _dt.datetime):
        return f"Date({_format_date(value)})"
    if isinstance(value, float):
        return _format_real(value)
    if isinstance(value, plistlib.UID):
        return "Uid(?)"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return f'"{value}"'
    return "Unknown"