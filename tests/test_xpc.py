import pytest

from imuxkit.xpc import (
    REPLY_CHANNEL,
    ROOT_CHANNEL,
    XPCConnection,
    XPCDevice,
    XPCService,
    parse_services,
)
from imuxkit.xpc_errors import XPCError
from imuxkit.xpc_format import XPCFlag, XPCMessage, decode_message


class FakeTransport:
    def __init__(self, replies):
        self.replies = {sid: list(chunks) for sid, chunks in replies.items()}
        self.settings = []
        self.window_updates = []
        self.writes = []

    async def send_settings(self, settings):
        self.settings.append(settings)

    async def send_window_update(self, stream_id, increment):
        self.window_updates.append((stream_id, increment))

    async def write_stream(self, stream_id, data):
        self.writes.append((stream_id, data))

    async def read_stream(self, stream_id):
        queue = self.replies.get(stream_id, [])
        return queue.pop(0) if queue else b""


SERVICES_BODY = {
    "Services": {
        "com.example.good": {
            "Entitlement": "com.example.entitled",
            "Port": "1234",
            "Properties": {
                "UsesRemoteXPC": True,
                "Features": ["alpha", 5, "beta"],
                "ServiceVersion": 2,
            },
        },
        "com.example.plain": {"Entitlement": "e", "Port": "80"},
        "com.example.noentitlement": {"Port": "1"},
        "com.example.badport": {"Entitlement": "e", "Port": "70000"},
        "com.example.notdict": 5,
    }
}


def handshake_replies():
    return {
        ROOT_CHANNEL: [XPCMessage().encode(0), XPCMessage().encode(0)],
        REPLY_CHANNEL: [XPCMessage().encode(0)],
    }


def test_parse_services_filters_and_reads_properties():
    services = parse_services(XPCMessage(message=SERVICES_BODY))
    assert set(services) == {"com.example.good", "com.example.plain"}
    assert services["com.example.good"] == XPCService(
        entitlement="com.example.entitled",
        port=1234,
        uses_remote_xpc=True,
        features=["alpha", "beta"],
        service_version=2,
    )
    plain = services["com.example.plain"]
    assert plain.uses_remote_xpc is False
    assert plain.features is None
    assert plain.service_version is None


def test_parse_services_requires_services_dictionary():
    with pytest.raises(XPCError):
        parse_services(XPCMessage(message={"Other": {}}))
    with pytest.raises(XPCError):
        parse_services(XPCMessage(message=None))


@pytest.mark.asyncio
async def test_handshake_sends_expected_frames():
    transport = FakeTransport(handshake_replies())
    conn = XPCConnection(transport)
    await conn.handshake()

    assert transport.settings == [{3: 100, 4: 1048576}]
    assert transport.window_updates == [(0, 983041)]
    streams = [sid for sid, _ in transport.writes]
    assert streams == [ROOT_CHANNEL, REPLY_CHANNEL, ROOT_CHANNEL]

    first, second, third = (decode_message(data) for _, data in transport.writes)
    assert first.message == {}
    assert first.flags == XPCFlag.ALWAYS_SET
    assert second.flags == XPCFlag.INIT_HANDSHAKE | XPCFlag.ALWAYS_SET
    assert second.message is None
    assert third.flags == 0x201
    assert [first.message_id, second.message_id, third.message_id] == [1, 2, 2]
    assert conn.root_message_id == 3
    assert conn.reply_message_id == 2


@pytest.mark.asyncio
async def test_read_message_joins_split_chunks():
    encoded = XPCMessage(message={"key": "value"}).encode(7)
    transport = FakeTransport({ROOT_CHANNEL: [encoded[:10], encoded[10:30], encoded[30:]]})
    conn = XPCConnection(transport)
    message = await conn.read_message(ROOT_CHANNEL)
    assert message.message == {"key": "value"}
    assert message.message_id == 7
    assert conn.root_message_id == 2


@pytest.mark.asyncio
async def test_read_message_fails_when_stream_ends():
    encoded = XPCMessage(message={"key": "value"}).encode(1)
    transport = FakeTransport({ROOT_CHANNEL: [encoded[:12]]})
    with pytest.raises(XPCError):
        await XPCConnection(transport).read_message(ROOT_CHANNEL)


@pytest.mark.asyncio
async def test_device_create_reads_services():
    replies = handshake_replies()
    replies[ROOT_CHANNEL].append(XPCMessage(message=SERVICES_BODY).encode(0))
    transport = FakeTransport(replies)
    device = await XPCDevice.create(XPCConnection(transport))
    assert device.services["com.example.good"].port == 1234
    assert device.connection.transport is transport