"""List the devices attached to usbmuxd."""

from __future__ import annotations

import argparse
import asyncio
import sys

from .usbmuxd import UsbmuxdAddr, UsbmuxdDevice, UsbmuxdError


async def _list_devices() -> list[UsbmuxdDevice]:
    connection = await UsbmuxdAddr.from_env().connect(0)
    async with connection:
        return await connection.get_devices()


def main(argv: list[str] | None = None) -> int:
    """Print one line per attached device; return the exit status."""
    parser = argparse.ArgumentParser(
        prog="idevice_id", description="List the devices attached to usbmuxd."
    )
    parser.parse_args(argv)
    try:
        devices = asyncio.run(_list_devices())
    except (UsbmuxdError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    for device in devices:
        print(f"{device.udid} {device.connection_type} (device id {device.device_id})")
    return 0


if __name__ == "__main__":
    sys.exit(main())