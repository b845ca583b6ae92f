"""Pick a device through usbmuxd and describe how to reach it."""

from __future__ import annotations

import os
from typing import Mapping

from .usbmuxd import ENV_VAR, UsbmuxdAddr, UsbmuxdError, UsbmuxdProvider


class ProviderError(Exception):
    """No device could be selected."""


async def get_provider(
    udid: str | None = None,
    label: str = "imuxkit",
    environ: Mapping[str, str] | None = None,
) -> UsbmuxdProvider:
    """Return a provider for ``udid``, or for the first attached device when none is given."""
    env = os.environ if environ is None else environ
    try:
        provider_addr = UsbmuxdAddr.from_env(env)
    except ValueError as exc:
        raise ProviderError(f"Bad {ENV_VAR}: {exc}") from exc

    if env.get(ENV_VAR) is not None:
        if provider_addr.tcp is None:
            raise ProviderError(f"Bad {ENV_VAR}: expected an address and port")
        muxer_addr, muxer_tag = provider_addr, 1
    else:
        muxer_addr, muxer_tag = UsbmuxdAddr.default(), 0

    try:
        connection = await muxer_addr.connect(muxer_tag)
    except UsbmuxdError as exc:
        raise ProviderError(f"Unable to connect to usbmuxd: {exc}") from exc

    async with connection:
        if udid is not None:
            try:
                device = await connection.get_device(udid)
            except UsbmuxdError as exc:
                raise ProviderError(f"Device not found: {exc}") from exc
            return device.to_provider(provider_addr, 1, label)

        try:
            devices = await connection.get_devices()
        except UsbmuxdError as exc:
            raise ProviderError(f"Unable to get devices from usbmuxd: {exc}") from exc
        if not devices:
            raise ProviderError("No devices connected!")
        return devices[0].to_provider(provider_addr, 0, label)