"""Client for the usbmuxd device multiplexer: device listing, pair records and connections."""

from __future__ import annotations

import asyncio
import enum
import ipaddress
import logging
import os
import plistlib
import struct
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Mapping, Union

from .plistutil import pretty_print_dictionary
from .raw_packet import RawPacket

log = logging.getLogger(__name__)

ENV_VAR = "USBMUXD_SOCKET_ADDRESS"
CLIENT_VERSION = "imuxkit"

# Whether the platform reaches usbmuxd through a Unix domain socket.
_UNIX_SOCKETS = os.name == "posix"

_HEADER = struct.Struct("<IIII")
_U32_MAX = 0xFFFFFFFF

_CONNECT_ERRORS = {
    1: "bad command",
    2: "bad device",
    3: "connection refused",
    6: "bad version",
}

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class UsbmuxdError(Exception):
    """A failure talking to usbmuxd."""


class DeviceNotFound(UsbmuxdError):
    """No attached device has the requested UDID."""


class UnexpectedResponse(UsbmuxdError):
    """usbmuxd answered with something that does not fit the protocol."""


class ConnectionKind(enum.Enum):
    """How a device is attached to the host."""

    USB = "USB"
    NETWORK = "Network"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class Connection:
    """The attachment of a device: its kind, network address or raw description."""

    kind: ConnectionKind
    address: IPAddress | None = None
    detail: str | None = None

    def __str__(self) -> str:
        if self.kind is ConnectionKind.USB:
            return "USB"
        if self.kind is ConnectionKind.NETWORK:
            return f"Network {self.address}"
        return self.detail or "Unknown"


def parse_network_address(data: bytes) -> Connection:
    """Decode the sockaddr bytes usbmuxd reports for a network-attached device."""
    data = bytes(data)
    if len(data) < 8:
        log.warning("Device address bytes len < 8")
        raise UnexpectedResponse("network address is shorter than 8 bytes")
    family = data[0]
    if family == 0x02:
        return Connection(ConnectionKind.NETWORK, address=ipaddress.IPv4Address(data[4:8]))
    if family == 0x1E:
        if len(data) < 24:
            log.warning("IPv6 address is less than 24 bytes")
            raise UnexpectedResponse("IPv6 address is shorter than 24 bytes")
        return Connection(ConnectionKind.NETWORK, address=ipaddress.IPv6Address(data[8:24]))
    log.warning("Unknown IP address protocol: %02X", family)
    return Connection(ConnectionKind.UNKNOWN, detail=f"Network {family:02X}")


def _parse_socket_addr(text: str) -> tuple[str, int]:
    if text.startswith("["):
        host, closed, rest = text[1:].partition("]")
        if not closed or not rest.startswith(":"):
            raise ValueError(f"invalid socket address: {text!r}")
        ip: IPAddress = ipaddress.IPv6Address(host)
        port_text = rest[1:]
    else:
        host, sep, port_text = text.rpartition(":")
        if not sep:
            raise ValueError(f"invalid socket address: {text!r}")
        ip = ipaddress.IPv4Address(host)
    if not port_text.isdigit() or not port_text.isascii():
        raise ValueError(f"invalid port in socket address: {text!r}")
    port = int(port_text)
    if port > 0xFFFF:
        raise ValueError(f"port out of range in socket address: {text!r}")
    return str(ip), port


@dataclass(frozen=True)
class UsbmuxdAddr:
    """Where usbmuxd listens: a Unix socket path or a TCP host and port."""

    unix_path: str | None = None
    tcp: tuple[str, int] | None = None

    DEFAULT_PORT = 27015
    SOCKET_FILE = "/var/run/usbmuxd"

    def __post_init__(self) -> None:
        if (self.unix_path is None) == (self.tcp is None):
            raise ValueError("exactly one of unix_path and tcp must be given")

    @staticmethod
    def default() -> "UsbmuxdAddr":
        """The platform's usual usbmuxd address."""
        if _UNIX_SOCKETS:
            return UsbmuxdAddr(unix_path=UsbmuxdAddr.SOCKET_FILE)
        return UsbmuxdAddr(tcp=("127.0.0.1", UsbmuxdAddr.DEFAULT_PORT))

    @staticmethod
    def from_env(environ: Mapping[str, str] | None = None) -> "UsbmuxdAddr":
        """The address named by the environment, or the default one."""
        env = os.environ if environ is None else environ
        value = env.get(ENV_VAR)
        if value is None:
            return UsbmuxdAddr.default()
        if _UNIX_SOCKETS and ":" not in value:
            return UsbmuxdAddr(unix_path=value)
        return UsbmuxdAddr(tcp=_parse_socket_addr(value))

    async def open(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        """Open a stream to usbmuxd."""
        try:
            if self.unix_path is not None:
                return await asyncio.open_unix_connection(self.unix_path)
            assert self.tcp is not None
            host, port = self.tcp
            return await asyncio.open_connection(host, port)
        except OSError as exc:
            raise UsbmuxdError(f"unable to reach usbmuxd: {exc}") from exc

    async def connect(self, tag: int) -> "UsbmuxdConnection":
        """Open a usbmuxd session whose packets carry ``tag``."""
        reader, writer = await self.open()
        return UsbmuxdConnection(reader, writer, tag)


@dataclass(frozen=True)
class UsbmuxdProvider:
    """Everything needed to reach one device through usbmuxd."""

    addr: UsbmuxdAddr
    tag: int
    udid: str
    device_id: int
    label: str


@dataclass(frozen=True)
class UsbmuxdDevice:
    """A device reported by usbmuxd."""

    connection_type: Connection
    udid: str
    device_id: int

    def to_provider(self, addr: UsbmuxdAddr, tag: int, label: str) -> UsbmuxdProvider:
        """Describe how to reach this device through ``addr``."""
        return UsbmuxdProvider(
            addr=addr, tag=tag, udid=self.udid, device_id=self.device_id, label=str(label)
        )


def _parse_connection(properties: Mapping[str, Any]) -> Connection:
    kind = properties.get("ConnectionType")
    if not isinstance(kind, str):
        raise UnexpectedResponse("device has no connection type")
    address = properties.get("NetworkAddress")
    if address is not None and not isinstance(address, (bytes, bytearray)):
        raise UnexpectedResponse("network address is not data")
    if kind == "Network":
        if address is None:
            log.warning("Device is network attached, but has no network info")
            raise UnexpectedResponse("network device has no address")
        return parse_network_address(address)
    if kind == "USB":
        return Connection(ConnectionKind.USB)
    return Connection(ConnectionKind.UNKNOWN, detail=kind)


def parse_device_list(response: Mapping[str, Any]) -> list[UsbmuxdDevice]:
    """Turn a ListDevices reply into device records."""
    entries = response.get("DeviceList") if isinstance(response, Mapping) else None
    if not isinstance(entries, list):
        raise UnexpectedResponse("reply has no device list")
    devices = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise UnexpectedResponse("device entry is not a dictionary")
        device_id = entry.get("DeviceID")
        if isinstance(device_id, bool) or not isinstance(device_id, int):
            raise UnexpectedResponse("device entry has no device id")
        if not 0 <= device_id <= _U32_MAX:
            raise UnexpectedResponse("device id is out of range")
        properties = entry.get("Properties")
        if not isinstance(properties, dict):
            raise UnexpectedResponse("device entry has no properties")
        serial = properties.get("SerialNumber")
        if not isinstance(serial, str):
            raise UnexpectedResponse("device entry has no serial number")
        connection = _parse_connection(properties)
        log.debug("Connection type: %s", connection)
        devices.append(UsbmuxdDevice(connection_type=connection, udid=serial, device_id=device_id))
    return devices


class UsbmuxdConnection:
    """A session with usbmuxd exchanging XML property-list packets."""

    BINARY_PLIST_VERSION = 0
    XML_PLIST_VERSION = 1
    RESULT_MESSAGE_TYPE = 1
    PLIST_MESSAGE_TYPE = 8

    def __init__(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, tag: int = 0
    ) -> None:
        self._reader: asyncio.StreamReader | None = reader
        self._writer: asyncio.StreamWriter | None = writer
        self.tag = tag

    async def __aenter__(self) -> "UsbmuxdConnection":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _streams(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        if self._reader is None or self._writer is None:
            raise UsbmuxdError("the usbmuxd session is no longer usable")
        return self._reader, self._writer

    async def _write_plist(self, request: dict[str, Any]) -> None:
        _, writer = self._streams()
        packet = RawPacket(request, self.XML_PLIST_VERSION, self.PLIST_MESSAGE_TYPE, self.tag)
        try:
            writer.write(packet.to_bytes())
            await writer.drain()
        except OSError as exc:
            raise UsbmuxdError(f"failed to write to usbmuxd: {exc}") from exc

    async def _read_plist(self) -> dict[str, Any]:
        reader, _ = self._streams()
        try:
            header = await reader.readexactly(_HEADER.size)
            size = _HEADER.unpack(header)[0]
            if size < _HEADER.size:
                raise UnexpectedResponse("packet size is smaller than its header")
            log.debug("Reading %d bytes from muxer", size - _HEADER.size)
            body = await reader.readexactly(size - _HEADER.size)
        except asyncio.IncompleteReadError as exc:
            raise UsbmuxdError("usbmuxd closed the connection") from exc
        except OSError as exc:
            raise UsbmuxdError(f"failed to read from usbmuxd: {exc}") from exc
        try:
            reply = plistlib.loads(body)
        except Exception as exc:
            raise UnexpectedResponse(f"reply is not a property list: {exc}") from exc
        if not isinstance(reply, dict):
            raise UnexpectedResponse("reply is not a dictionary")
        if log.isEnabledFor(logging.DEBUG):
            log.debug("Read from muxer: %s", pretty_print_dictionary(reply))
        return reply

    async def _request(self, request: dict[str, Any]) -> dict[str, Any]:
        await self._write_plist(request)
        return await self._read_plist()

    async def get_devices(self) -> list[UsbmuxdDevice]:
        """List the devices usbmuxd knows about."""
        reply = await self._request(
            {
                "MessageType": "ListDevices",
                "ClientVersionString": CLIENT_VERSION,
                "kLibUSBMuxVersion": 3,
            }
        )
        return parse_device_list(reply)

    async def get_device(self, udid: str) -> UsbmuxdDevice:
        """Find the attached device with the given UDID."""
        for device in await self.get_devices():
            if device.udid == udid:
                return device
        raise DeviceNotFound(f"no device with UDID {udid}")

    async def get_pair_record(self, udid: str) -> bytes:
        """Fetch the raw pair record stored for ``udid``."""
        log.debug("Getting pair record for %s", udid)
        reply = await self._request({"MessageType": "ReadPairRecord", "PairRecordID": udid})
        data = reply.get("PairRecordData")
        if not isinstance(data, (bytes, bytearray)):
            raise UnexpectedResponse("reply has no pair record data")
        return bytes(data)

    async def get_buid(self) -> str:
        """Fetch the host's system BUID."""
        reply = await self._request({"MessageType": "ReadBUID"})
        buid = reply.get("BUID")
        if not isinstance(buid, str):
            raise UnexpectedResponse("reply has no BUID")
        return buid

    async def connect_to_device(
        self, device_id: int, port: int
    ) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        """Tunnel this session to a device port and hand over its streams."""
        if not 0 <= port <= 0xFFFF:
            raise ValueError(f"port {port} is out of range")
        log.debug("Connecting to device %d on port %d", device_id, port)
        network_port = int.from_bytes(port.to_bytes(2, "big"), "little")
        reply = await self._request(
            {"MessageType": "Connect", "DeviceID": device_id, "PortNumber": network_port}
        )
        number = reply.get("Number")
        if isinstance(number, bool) or not isinstance(number, int) or number < 0:
            raise UnexpectedResponse("reply has no result number")
        if number == 0:
            streams = self._streams()
            self._reader = self._writer = None
            return streams
        reason = _CONNECT_ERRORS.get(number)
        if reason is None:
            raise UnexpectedResponse(f"unknown result number {number}")
        raise UsbmuxdError(f"usbmuxd refused the connection: {reason} (result {number})")

    async def close(self) -> None:
        """Close the session unless its streams were handed over."""
        writer = self._writer
        self._reader = self._writer = None
        if writer is None:
            return
        writer.close()
        with suppress(OSError):
            await writer.wait_closed()