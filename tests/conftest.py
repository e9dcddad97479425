import asyncio

import pytest

from pyx32.listener import MixerListener
from pyx32.protocol import ConnectionState, MixerProtocol, encode_message

PEER = ("192.168.0.64", 10023)


class FakeTransport:
    """Stands in for asyncio's datagram transport and records what is sent."""

    def __init__(self, peer=PEER):
        self.peer = peer
        self.sent = []
        self.closed = False

    def sendto(self, data, addr=None):
        self.sent.append(data)

    def close(self):
        self.closed = True

    def get_extra_info(self, name, default=None):
        if name == "peername":
            return self.peer
        return default


class RecordingListener(MixerListener):

    def __init__(self):
        self.events = []
        self.messages = []
        self.errors = []

    def connected(self):
        self.events.append("connected")

    def disconnected(self):
        self.events.append("disconnected")

    def message_received(self, message):
        self.messages.append(message)

    def error(self, error_message: str):
        self.errors.append(error_message)


def attach_fake_transport(protocol: MixerProtocol) -> FakeTransport:
    """Drive a protocol into CONNECTED the way create_datagram_endpoint would."""
    transport = FakeTransport()
    protocol._state = ConnectionState.CONNECTING
    protocol.connection_made(transport)
    return transport


def reply(protocol: MixerProtocol, address: str, *values):
    protocol.datagram_received(encode_message(address, list(values)), PEER)


async def wait_for_pending(protocol: MixerProtocol, count: int):
    for _ in range(100):
        if protocol.pending_count >= count:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"expected {count} pending requests, have {protocol.pending_count}")


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def protocol(listener):
    return MixerProtocol(listener, timeout=0.2)
