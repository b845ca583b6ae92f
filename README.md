# imuxkit

Asyncio clients and wire formats for talking to iOS devices through the
`usbmuxd` muxer.

- `imuxkit.usbmuxd`: a usbmuxd client. `UsbmuxdConnection` lists attached
  devices (`get_devices`, `get_device`), reads pair records
  (`get_pair_record`, returned as raw bytes) and the system BUID
  (`get_buid`), and tunnels a session to a device port
  (`connect_to_device`, which hands back the stream reader and writer).
  `UsbmuxdAddr` says where the muxer listens; `parse_device_list` and
  `parse_network_address` decode its replies.
- `imuxkit.provider`: `get_provider(udid=None, label=..., environ=None)`
  picks a device, by UDID or the first attached one, and returns a
  `UsbmuxdProvider` describing how to reach it. It raises `ProviderError`
  when no device can be chosen.
- `imuxkit.raw_packet`: the usbmuxd packet frame (`RawPacket`,
  `parse_raw_packet`).
- `imuxkit.xpc_format`: encodes and decodes XPC objects (`encode_object`,
  `decode_object`) and messages (`XPCMessage`, `decode_message`). Python
  `bool`, `int`, `str`, `bytes`, `uuid.UUID`, `dict` and `list` map to the XPC
  types; wrap an integer in `UInt64` to send it as unsigned.
- `imuxkit.xpc`: `XPCConnection` runs the RemoteXPC opening exchange and
  sends and reads messages; `XPCDevice.create` also reads the advertised
  services into `XPCService` records (`parse_services`).
- `imuxkit.cdtunnel`: `encode` and `decode` for CDTunnel JSON frames.
- `imuxkit.plistutil`: `plist_to_xml_bytes`, `pretty_print_plist` and
  `pretty_print_dictionary`.
- `imuxkit.web_inspector`: `WebInspectorClient` lists inspectable
  applications, opens a DevTools WebSocket for a web view, and prints the
  text messages received on it.
- Errors: `UsbmuxdError` (with `DeviceNotFound` and `UnexpectedResponse`),
  `XPCError` / `XPCParseError`, `CDTunnelError`, `RawPacketError`,
  `WebInspectorError`.

## Installation

```
pip install imuxkit
```

With the test dependencies:

```
pip install "imuxkit[test]"
```

## Listing devices

The `idevice-id` command asks the muxer for the attached devices and prints
one line per device: its UDID, how it is attached, and its device id.

```
idevice-id
```

It exits with status 1 and prints an error if the muxer cannot be reached.

The muxer address comes from the `USBMUXD_SOCKET_ADDRESS` environment
variable. On POSIX systems a value containing a colon, such as
`127.0.0.1:27015` or `[::1]:27015`, is a TCP address and any other value is a
Unix socket path; elsewhere the value must be a TCP address. Without the
variable, `/var/run/usbmuxd` is used on POSIX systems and `127.0.0.1:27015`
elsewhere. `get_provider` accepts only a TCP address in this variable.

## Using the library

The network clients are coroutines:

```python
import asyncio

from imuxkit.usbmuxd import UsbmuxdAddr


async def show_devices():
    connection = await UsbmuxdAddr.from_env().connect(0)
    async with connection:
        for device in await connection.get_devices():
            print(device.udid, device.connection_type)


asyncio.run(show_devices())
```

Encoding and decoding XPC objects:

```python
from imuxkit.xpc_format import decode_object, encode_object

payload = encode_object({"Services": {}, "Version": 1})
assert decode_object(payload) == {"Services": {}, "Version": 1}
```

Printing a property-list value:

```python
from imuxkit.plistutil import pretty_print_plist

print(pretty_print_plist({"Name": "demo", "Items": [1, 2, True]}))
```

## What the package does not do

- It has no HTTP/2 layer. `XPCConnection` works over any object with the
  `send_settings`, `send_window_update`, `write_stream` and `read_stream`
  coroutines of its `StreamTransport` protocol, which the caller supplies.
- It does not parse pair records, talk to lockdown, start device services,
  or set up tunnels. `WebInspectorClient` must be given an already connected
  reader and writer.
- `get_provider` only selects devices through usbmuxd; it cannot reach a
  device by IP address and pairing file.
- `idevice-id` is the only command.

## Running the tests

```
pip install "imuxkit[test]"
pytest
```