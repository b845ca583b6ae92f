"""Asyncio clients and wire formats for talking to iOS devices through usbmuxd."""

__version__ = "0.1.0"

__all__ = [
    "cdtunnel",
    "idevice_id",
    "plistutil",
    "provider",
    "raw_packet",
    "usbmuxd",
    "web_inspector",
    "xpc",
    "xpc_errors",
    "xpc_format",
]