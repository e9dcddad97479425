import asyncio

import pytest

from pyx32.device import DeviceType
from pyx32.errors import (
    AlreadyConnected,
    ConnectionClosed,
    NoValueReturned,
    NotConnected,
    ProtocolParseError,
    RequestAlreadyPending,
    RequestTimeout,
)
from pyx32.listener import MultiplexingListener
from pyx32.protocol import (
    ConnectionConfig,
    ConnectionState,
    MixerInfo,
    MixerProtocol,
    MixerStatus,
    OscArgument,
    WireMessage,
    decode_datagram,
    decode_message,
    encode_message,
    infer_type_tag,
    parse_info,
    parse_status,
)
from tests.conftest import PEER, RecordingListener, attach_fake_transport, reply, wait_for_pending

# Replies captured from an X32 running firmware 4.06
INFO_REPLY = b"/info\x00\x00\x00,ssss\x00\x00\x00V2.05\x00\x00\x00osc-server\x00\x00X32\x004.06\x00\x00\x00\x00"
STATUS_REPLY = (
    b"/status\x00,sss\x00\x00\x00\x00active\x00\x00192.168.0.64\x00\x00\x00\x00osc-server\x00\x00"
)
FADER_REPLY = b"/ch/01/mix/fader\x00\x00\x00\x00,f\x00\x00?@\x00\x00"


class TestConnectionConfig:

    def test_default_ports(self):
        assert ConnectionConfig("10.0.0.2").resolved_port == 10023
        assert ConnectionConfig("10.0.0.2", device_type="XR18").resolved_port == 10024
        assert ConnectionConfig("10.0.0.2", port=9000, device_type="XR18").resolved_port == 9000

    def test_device_type_is_normalized(self):
        assert ConnectionConfig("10.0.0.2", device_type="m32").device_type is DeviceType.X32

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("MIXER_HOST", "10.0.0.5")
        monkeypatch.setenv("MIXER_PORT", "10099")
        monkeypatch.setenv("MIXER_TYPE", "XR12")
        config = ConnectionConfig.from_env()
        assert config == ConnectionConfig("10.0.0.5", 10099, DeviceType.XR12)

    def test_arguments_override_env(self, monkeypatch):
        monkeypatch.delenv("MIXER_PORT", raising=False)
        monkeypatch.setenv("MIXER_HOST", "10.0.0.5")
        monkeypatch.setenv("MIXER_TYPE", "XR12")
        config = ConnectionConfig.from_env("10.0.0.9", device_type="X32")
        assert config.host == "10.0.0.9"
        assert config.device_type is DeviceType.X32
        assert config.resolved_port == 10023

    def test_from_env_requires_host(self, monkeypatch):
        monkeypatch.delenv("MIXER_HOST", raising=False)
        with pytest.raises(ValueError):
            ConnectionConfig.from_env()


class TestWireFormat:

    @pytest.mark.parametrize("value,tag", [
        (1, "i"), (True, "i"), (0.5, "f"), (1.0, "f"), ("Vox", "s"), (b"\x01", "b"), (None, "s"),
    ])
    def test_infer_type_tag(self, value, tag):
        assert infer_type_tag(value) == tag

    def test_encode_string(self):
        assert encode_message("/ch/01/config/name", ["Vox"]) == b"/ch/01/config/name\x00\x00,s\x00\x00Vox\x00"

    def test_encode_query_has_no_arguments(self):
        assert decode_message(encode_message("/info")) == WireMessage("/info", ())

    def test_encode_bool_as_int(self):
        message = decode_message(encode_message("/ch/01/mix/on", [False]))
        assert message.args == (OscArgument("i", 0),)

    def test_explicit_type_tag(self):
        message = decode_message(encode_message("/ch/01/mix/fader", [OscArgument("f", 1)]))
        assert message.args == (OscArgument("f", 1.0),)

    def test_decode_captured_fader_reply(self):
        message = decode_message(FADER_REPLY)
        assert message.address == "/ch/01/mix/fader"
        assert message.args == (OscArgument("f", 0.75),)
        assert message.values == [0.75]

    def test_decode_garbage(self):
        with pytest.raises(ProtocolParseError):
            decode_message(b"not-osc")

    def test_decode_bundle(self):
        from pythonosc.osc_bundle_builder import IMMEDIATELY, OscBundleBuilder
        from pythonosc.osc_message import OscMessage

        builder = OscBundleBuilder(IMMEDIATELY)
        builder.add_content(OscMessage(encode_message("/ch/01/mix/on", [1])))
        builder.add_content(OscMessage(encode_message("/ch/02/mix/on", [0])))
        messages = decode_datagram(builder.build().dgram)
        assert [m.address for m in messages] == ["/ch/01/mix/on", "/ch/02/mix/on"]
        assert [m.values for m in messages] == [[1], [0]]


class TestInfoAndStatus:

    def test_parse_captured_info(self):
        info = parse_info(decode_message(INFO_REPLY).args)
        assert info == MixerInfo("V2.05", "osc-server", "X32", "4.06")

    def test_parse_captured_status(self):
        status = parse_status(decode_message(STATUS_REPLY).args)
        assert status == MixerStatus("active", "192.168.0.64", "osc-server")

    @pytest.mark.parametrize("values", [[], ["V2.05", "osc-server", "X32"], ["a", "b", "c", "d", "e"]])
    def test_info_requires_four_fields(self, values):
        with pytest.raises(ProtocolParseError) as exc_info:
            parse_info(values)
        assert exc_info.value.expected == 4
        assert exc_info.value.actual == len(values)

    def test_status_requires_three_fields(self):
        with pytest.raises(ProtocolParseError):
            parse_status(["active", "192.168.0.64"])


class TestConnection:

    def test_starts_disconnected(self, protocol):
        assert protocol.state is ConnectionState.DISCONNECTED
        assert not protocol.connected
        assert protocol.pending_count == 0

    def test_connection_made_notifies_listener(self, protocol, listener):
        attach_fake_transport(protocol)
        assert protocol.connected
        assert protocol.peer_name == PEER
        assert listener.events == ["connected"]

    @pytest.mark.asyncio
    async def test_connect_twice(self, protocol):
        attach_fake_transport(protocol)
        with pytest.raises(AlreadyConnected):
            await protocol.async_connect(ConnectionConfig("192.168.0.64"))

    def test_disconnect(self, protocol, listener):
        transport = attach_fake_transport(protocol)
        protocol.disconnect()
        assert transport.closed
        assert protocol.state is ConnectionState.DISCONNECTED
        assert listener.events == ["connected", "disconnected"]

    def test_disconnect_is_idempotent(self, protocol, listener):
        attach_fake_transport(protocol)
        protocol.disconnect()
        protocol.disconnect()
        assert listener.events == ["connected", "disconnected"]

    def test_late_connection_made_after_disconnect_closes_socket(self, protocol, listener):
        from tests.conftest import FakeTransport

        transport = FakeTransport()
        protocol.connection_made(transport)
        assert transport.closed
        assert not protocol.connected
        assert listener.events == []

    def test_connection_lost_after_close_is_ignored(self, protocol, listener):
        attach_fake_transport(protocol)
        protocol.disconnect()
        protocol.connection_lost(None)
        assert listener.events == ["connected", "disconnected"]

    @pytest.mark.asyncio
    async def test_connection_lost_rejects_pending(self, protocol, listener):
        attach_fake_transport(protocol)
        task = asyncio.create_task(protocol.get_parameter("/ch/01/mix/fader"))
        await wait_for_pending(protocol, 1)
        protocol.connection_lost(OSError("network unreachable"))
        with pytest.raises(ConnectionClosed):
            await task
        assert listener.events == ["connected", "disconnected"]

    def test_error_received_reaches_listener(self, protocol, listener):
        attach_fake_transport(protocol)
        protocol.error_received(ConnectionRefusedError("refused"))
        assert listener.errors == ["Socket error: refused"]


class TestRequests:

    @pytest.mark.asyncio
    async def test_send_while_disconnected(self, protocol):
        with pytest.raises(NotConnected):
            await protocol.send_message("/info")
        with pytest.raises(NotConnected):
            await protocol.set_parameter("/ch/01/mix/fader", 0.5)

    @pytest.mark.asyncio
    async def test_fire_and_forget(self, protocol):
        transport = attach_fake_transport(protocol)
        assert await protocol.send_message("/ch/01/mix/fader", [0.5], wait_for_reply=False) is None
        assert protocol.pending_count == 0
        assert decode_message(transport.sent[0]) == WireMessage("/ch/01/mix/fader", (OscArgument("f", 0.5),))

    @pytest.mark.asyncio
    async def test_reply_resolves_request(self, protocol, listener):
        transport = attach_fake_transport(protocol)
        task = asyncio.create_task(protocol.get_parameter("/ch/01/mix/fader"))
        await wait_for_pending(protocol, 1)
        assert protocol.is_pending("/ch/01/mix/fader")
        assert decode_message(transport.sent[0]) == WireMessage("/ch/01/mix/fader")

        protocol.datagram_received(FADER_REPLY, PEER)
        assert await task == 0.75
        assert protocol.pending_count == 0
        assert [m.address for m in listener.messages] == ["/ch/01/mix/fader"]

    @pytest.mark.asyncio
    async def test_reply_for_other_address_does_not_resolve(self, protocol, listener):
        attach_fake_transport(protocol)
        task = asyncio.create_task(protocol.get_parameter("/ch/01/mix/fader"))
        await wait_for_pending(protocol, 1)
        reply(protocol, "/ch/02/mix/fader", 0.25)
        await asyncio.sleep(0)
        assert not task.done()
        assert len(listener.messages) == 1

        reply(protocol, "/ch/01/mix/fader", 0.5)
        assert await task == 0.5

    @pytest.mark.asyncio
    async def test_send_message_returns_tagged_arguments(self, protocol):
        attach_fake_transport(protocol)
        task = asyncio.create_task(protocol.send_message("/ch/01/config/name"))
        await wait_for_pending(protocol, 1)
        reply(protocol, "/ch/01/config/name", "Kick")
        assert await task == [OscArgument("s", "Kick")]

    @pytest.mark.asyncio
    async def test_concurrent_requests_to_different_addresses(self, protocol):
        attach_fake_transport(protocol)
        first = asyncio.create_task(protocol.get_parameter("/ch/01/mix/fader"))
        second = asyncio.create_task(protocol.get_parameter("/ch/02/mix/fader"))
        await wait_for_pending(protocol, 2)
        reply(protocol, "/ch/02/mix/fader", 0.25)
        reply(protocol, "/ch/01/mix/fader", 0.75)
        assert await first == 0.75
        assert await second == 0.25

    @pytest.mark.asyncio
    async def test_second_request_to_same_address_is_rejected(self, protocol):
        transport = attach_fake_transport(protocol)
        first = asyncio.create_task(protocol.get_parameter("/ch/01/mix/fader"))
        await wait_for_pending(protocol, 1)
        with pytest.raises(RequestAlreadyPending):
            await protocol.get_parameter("/ch/01/mix/fader")
        assert len(transport.sent) == 1

        reply(protocol, "/ch/01/mix/fader", 0.75)
        assert await first == 0.75

    @pytest.mark.asyncio
    async def test_timeout_removes_pending_entry(self, listener):
        protocol = MixerProtocol(listener, timeout=0.05)
        attach_fake_transport(protocol)
        with pytest.raises(RequestTimeout) as exc_info:
            await protocol.get_parameter("/ch/01/mix/fader")
        assert exc_info.value.address == "/ch/01/mix/fader"
        assert isinstance(exc_info.value, TimeoutError)
        assert protocol.pending_count == 0

        # A reply arriving after the timeout is only an unsolicited message
        reply(protocol, "/ch/01/mix/fader", 0.75)
        assert protocol.pending_count == 0

        task = asyncio.create_task(protocol.get_parameter("/ch/01/mix/fader"))
        await wait_for_pending(protocol, 1)
        reply(protocol, "/ch/01/mix/fader", 0.5)
        assert await task == 0.5

    @pytest.mark.asyncio
    async def test_disconnect_rejects_pending(self, protocol):
        attach_fake_transport(protocol)
        task = asyncio.create_task(protocol.get_parameter("/ch/01/mix/fader"))
        await wait_for_pending(protocol, 1)
        protocol.disconnect()
        with pytest.raises(ConnectionClosed) as exc_info:
            await task
        assert exc_info.value.address == "/ch/01/mix/fader"
        assert protocol.pending_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_request_is_cleaned_up(self, protocol):
        attach_fake_transport(protocol)
        task = asyncio.create_task(protocol.get_parameter("/ch/01/mix/fader"))
        await wait_for_pending(protocol, 1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert protocol.pending_count == 0

    @pytest.mark.asyncio
    async def test_empty_reply(self, protocol):
        attach_fake_transport(protocol)
        task = asyncio.create_task(protocol.get_parameter("/ch/01/mix/fader"))
        await wait_for_pending(protocol, 1)
        reply(protocol, "/ch/01/mix/fader")
        with pytest.raises(NoValueReturned):
            await task

    @pytest.mark.asyncio
    async def test_get_info_and_status(self, protocol):
        attach_fake_transport(protocol)
        info_task = asyncio.create_task(protocol.get_info())
        status_task = asyncio.create_task(protocol.get_status())
        await wait_for_pending(protocol, 2)
        protocol.datagram_received(INFO_REPLY, PEER)
        protocol.datagram_received(STATUS_REPLY, PEER)
        assert (await info_task).console_model == "X32"
        assert (await status_task).ip_address == "192.168.0.64"

    def test_undecodable_datagram_goes_to_listener(self, protocol, listener):
        attach_fake_transport(protocol)
        protocol.datagram_received(b"not-osc", PEER)
        assert len(listener.errors) == 1
        assert listener.messages == []
        assert protocol.connected

    def test_invalid_utf8_address_goes_to_listener(self, protocol, listener):
        attach_fake_transport(protocol)
        protocol.datagram_received(b"/ch/\xff\xfe\x00\x00,\x00\x00\x00", PEER)
        assert len(listener.errors) == 1
        assert listener.messages == []
        assert protocol.connected

    def test_decode_invalid_utf8(self):
        with pytest.raises(ProtocolParseError):
            decode_message(b"/ch/\xff\xfe\x00\x00,\x00\x00\x00")

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_reply(self):
        class BrokenListener(RecordingListener):
            def message_received(self, message):
                raise RuntimeError("listener bug")

        multiplexer = MultiplexingListener()
        multiplexer.register_listener(BrokenListener())
        protocol = MixerProtocol(multiplexer, timeout=0.2)
        attach_fake_transport(protocol)
        task = asyncio.create_task(protocol.get_parameter("/ch/01/mix/fader"))
        await wait_for_pending(protocol, 1)
        reply(protocol, "/ch/01/mix/fader", 0.5)
        assert await task == 0.5
        assert protocol.pending_count == 0


class FakeMixer(asyncio.DatagramProtocol):
    """Minimal console emulator: answers queries from a parameter table and stores writes."""

    def __init__(self, parameters):
        self.parameters = parameters
        self.received = []
        self.transport = None

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data, addr):
        message = decode_message(data)
        self.received.append(message)
        if message.args:
            self.parameters[message.address] = message.values
        elif message.address in self.parameters:
            self.transport.sendto(encode_message(message.address, self.parameters[message.address]), addr)


@pytest.mark.asyncio
async def test_loopback_against_fake_mixer():
    loop = asyncio.get_running_loop()
    fake_transport, fake = await loop.create_datagram_endpoint(
        lambda: FakeMixer({
            "/info": ["V2.05", "osc-server", "X32", "4.06"],
            "/ch/05/mix/fader": [0.75],
        }),
        local_addr=("127.0.0.1", 0),
    )
    port = fake_transport.get_extra_info("sockname")[1]
    listener = RecordingListener()
    protocol = MixerProtocol(listener, timeout=1.0)
    try:
        await protocol.async_connect(ConnectionConfig("127.0.0.1", port))
        assert protocol.connected
        assert listener.events == ["connected"]

        info = await protocol.get_info()
        assert info.console_version == "4.06"
        assert await protocol.get_parameter("/ch/05/mix/fader") == 0.75

        await protocol.set_parameter("/ch/05/mix/fader", 0.25)
        assert await protocol.get_parameter("/ch/05/mix/fader") == 0.25
        assert [m.address for m in fake.received] == ["/info", "/ch/05/mix/fader", "/ch/05/mix/fader", "/ch/05/mix/fader"]
    finally:
        protocol.disconnect()
        fake_transport.close()
    assert listener.events == ["connected", "disconnected"]
