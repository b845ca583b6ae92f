"""RemoteXPC connections over a multiplexed stream transport, and service discovery."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Protocol

from .xpc_errors import XPCError
from .xpc_format import XPCFlag, XPCMessage, as_signed_integer, decode_message

log = logging.getLogger(__name__)

ROOT_CHANNEL = 1
REPLY_CHANNEL = 3
INIT_STREAM = 0

SETTINGS_MAX_CONCURRENT_STREAMS = 0x3
SETTINGS_INITIAL_WINDOW_SIZE = 0x4

_PORT = re.compile(r"\+?[0-9]+")


class StreamTransport(Protocol):
    """A multiplexed byte transport that carries XPC messages on numbered streams."""

    async def send_settings(self, settings: dict[int, int]) -> None: ...

    async def send_window_update(self, stream_id: int, increment: int) -> None: ...

    async def write_stream(self, stream_id: int, data: bytes) -> None: ...

    async def read_stream(self, stream_id: int) -> bytes: ...


@dataclass
class XPCService:
    """A service advertised by a RemoteXPC device."""

    entitlement: str
    port: int
    uses_remote_xpc: bool = False
    features: list[str] | None = None
    service_version: int | None = None


def _parse_port(value: Any) -> int | None:
    if not isinstance(value, str) or not _PORT.fullmatch(value):
        return None
    port = int(value)
    return port if port <= 0xFFFF else None


def _parse_service(service: dict[str, Any]) -> XPCService | None:
    entitlement = service.get("Entitlement")
    if not isinstance(entitlement, str):
        log.warning("Service did not contain entitlement string")
        return None
    port = _parse_port(service.get("Port"))
    if port is None:
        log.warning("Service did not contain port string")
        return None

    properties = service.get("Properties")
    if not isinstance(properties, dict):
        properties = {}
    uses_remote_xpc = properties.get("UsesRemoteXPC")
    features = properties.get("Features")
    version = properties.get("ServiceVersion")

    return XPCService(
        entitlement=entitlement,
        port=port,
        uses_remote_xpc=uses_remote_xpc if isinstance(uses_remote_xpc, bool) else False,
        features=(
            [item for item in features if isinstance(item, str)]
            if isinstance(features, list)
            else None
        ),
        service_version=as_signed_integer(version) if version is not None else None,
    )


def parse_services(message: XPCMessage) -> dict[str, XPCService]:
    """Extract the advertised services from a device's first root-channel message."""
    body = message.message
    services = body.get("Services") if isinstance(body, dict) else None
    if not isinstance(services, dict):
        raise XPCError("Unexpected response: no services dictionary")

    result: dict[str, XPCService] = {}
    for name, service in services.items():
        if not isinstance(service, dict):
            log.warning("Service is not a dictionary!")
            continue
        parsed = _parse_service(service)
        if parsed is not None:
            result[name] = parsed
    return result


class XPCConnection:
    """Sends and receives XPC messages over a stream transport."""

    ROOT_CHANNEL = ROOT_CHANNEL
    REPLY_CHANNEL = REPLY_CHANNEL

    def __init__(self, transport: StreamTransport) -> None:
        self.transport = transport
        self.root_message_id = 1
        self.reply_message_id = 1

    async def handshake(self) -> None:
        """Configure the transport and perform the XPC opening exchange."""
        await self.transport.send_settings(
            {
                SETTINGS_MAX_CONCURRENT_STREAMS: 100,
                SETTINGS_INITIAL_WINDOW_SIZE: 1048576,
            }
        )
        await self.transport.send_window_update(INIT_STREAM, 983041)
        await self.send_recv_message(
            ROOT_CHANNEL, XPCMessage(flags=XPCFlag.ALWAYS_SET, message={})
        )
        await self.send_recv_message(
            REPLY_CHANNEL,
            XPCMessage(flags=XPCFlag.INIT_HANDSHAKE | XPCFlag.ALWAYS_SET),
        )
        await self.send_recv_message(ROOT_CHANNEL, XPCMessage(flags=0x201))

    async def send_message(self, stream_id: int, message: XPCMessage) -> None:
        """Encode ``message`` and write it to the given stream."""
        await self.transport.write_stream(stream_id, message.encode(self.root_message_id))

    async def read_message(self, stream_id: int) -> XPCMessage:
        """Read from a stream until a whole XPC message has arrived."""
        buffer = bytearray(await self.transport.read_stream(stream_id))
        while True:
            try:
                decoded = decode_message(bytes(buffer))
            except XPCError as exc:
                log.warning("Error decoding message: %s", exc)
                chunk = await self.transport.read_stream(stream_id)
                if not chunk:
                    raise XPCError("stream closed before a whole message arrived") from exc
                buffer += chunk
                continue
            log.debug("Decoded message: %r", decoded)
            if stream_id == ROOT_CHANNEL:
                self.root_message_id += 1
            elif stream_id == REPLY_CHANNEL:
                self.reply_message_id += 1
            return decoded

    async def send_recv_message(self, stream_id: int, message: XPCMessage) -> XPCMessage:
        """Send a message and wait for the reply on the same stream."""
        await self.send_message(stream_id, message)
        return await self.read_message(stream_id)


@dataclass
class XPCDevice:
    """A RemoteXPC device and the services it advertises."""

    connection: XPCConnection
    services: dict[str, XPCService] = field(default_factory=dict)

    @classmethod
    async def create(cls, connection: XPCConnection) -> "XPCDevice":
        """Perform the handshake on ``connection`` and read the service list."""
        await connection.handshake()
        message = await connection.read_message(ROOT_CHANNEL)
        return cls(connection=connection, services=parse_services(message))