"""OSC over UDP transport for X32/M32 and XR-series mixers.

The mixer protocol is plain OSC in UDP datagrams with no connection and no
correlation token: a query is a message with no arguments sent to a
parameter address, and the answer is a message from the mixer to that same
address carrying the value. MixerProtocol therefore correlates replies by
address. At most one reply may be awaited per address at a time; a second
waiter on the same address is rejected with RequestAlreadyPending rather
than risking it receiving the first request's answer.

Writes are fire-and-forget: the mixer does not acknowledge them.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NamedTuple, Optional, Sequence, Union

from pythonosc.osc_bundle import OscBundle
from pythonosc.osc_message import OscMessage, ParseError
from pythonosc.osc_message_builder import OscMessageBuilder
from pythonosc.parsing import osc_types

from pyx32.device import DeviceType, get_profile, parse_device_type
from pyx32.errors import (
    AlreadyConnected,
    ConnectionClosed,
    NoValueReturned,
    NotConnected,
    ProtocolParseError,
    RequestAlreadyPending,
    RequestTimeout,
)
from pyx32.listener import MixerListener

DEFAULT_TIMEOUT = 5.0

INFO_ADDRESS = "/info"
STATUS_ADDRESS = "/status"

# /info answers ,ssss: server version, server name, console model, console version
# e.g. ["V2.05", "osc-server", "X32", "4.06"]
INFO_FIELD_COUNT = 4
# /status answers ,sss: state, IP address, server name
# e.g. ["active", "192.168.0.64", "osc-server"]
STATUS_FIELD_COUNT = 3


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class ConnectionConfig:
    host: str
    port: Optional[int] = None
    device_type: DeviceType = DeviceType.X32

    def __post_init__(self):
        object.__setattr__(self, "device_type", parse_device_type(self.device_type))

    @property
    def resolved_port(self) -> int:
        """Configured port, or the model's default OSC port."""
        if self.port is not None:
            return self.port
        return get_profile(self.device_type).default_port

    @classmethod
    def from_env(cls, host: Optional[str] = None, port: Optional[int] = None,
                 device_type: Optional[Union[str, DeviceType]] = None) -> "ConnectionConfig":
        """Build a config from MIXER_HOST, MIXER_PORT and MIXER_TYPE.

        Explicit arguments take precedence over the environment.
        """
        host = host or os.environ.get("MIXER_HOST")
        if not host:
            raise ValueError("Mixer host is required: pass host or set MIXER_HOST")
        if port is None and os.environ.get("MIXER_PORT"):
            port = int(os.environ["MIXER_PORT"])
        if device_type is None:
            device_type = os.environ.get("MIXER_TYPE")
        return cls(host=host, port=port, device_type=parse_device_type(device_type))


class OscArgument(NamedTuple):
    type_tag: str
    value: Any


@dataclass(frozen=True)
class WireMessage:
    address: str
    args: tuple[OscArgument, ...] = ()

    @property
    def values(self) -> list[Any]:
        return [arg.value for arg in self.args]


@dataclass
class PendingRequest:
    """A request waiting for the mixer to answer on its address."""
    address: str
    deadline: float
    future: asyncio.Future
    timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False)

    def cancel_timer(self):
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


@dataclass(frozen=True)
class MixerInfo:
    server_version: str
    server_name: str
    console_model: str
    console_version: str


@dataclass(frozen=True)
class MixerStatus:
    state: str
    ip_address: str
    server_name: str


# ---------------------------------------------------------------------------
# Wire encoding
# ---------------------------------------------------------------------------

def infer_type_tag(value) -> str:
    """Pick the OSC type tag for a Python value."""
    if isinstance(value, OscArgument):
        return value.type_tag
    if isinstance(value, (bool, int)):
        return OscMessageBuilder.ARG_TYPE_INT
    if isinstance(value, float):
        return OscMessageBuilder.ARG_TYPE_FLOAT
    if isinstance(value, (bytes, bytearray)):
        return OscMessageBuilder.ARG_TYPE_BLOB
    return OscMessageBuilder.ARG_TYPE_STRING


def _coerce(value, type_tag: str):
    if isinstance(value, OscArgument):
        value = value.value
    if type_tag == OscMessageBuilder.ARG_TYPE_INT:
        return int(value)
    if type_tag == OscMessageBuilder.ARG_TYPE_FLOAT:
        return float(value)
    if type_tag == OscMessageBuilder.ARG_TYPE_BLOB:
        return bytes(value)
    if type_tag == OscMessageBuilder.ARG_TYPE_STRING:
        return str(value)
    return value


def encode_message(address: str, args: Sequence[Any] = ()) -> bytes:
    """Encode an address and arguments as an OSC datagram.

    Arguments may be plain values, whose tag is inferred, or OscArgument
    pairs to force a tag.
    """
    builder = OscMessageBuilder(address=address)
    for arg in args:
        type_tag = infer_type_tag(arg)
        builder.add_arg(_coerce(arg, type_tag), type_tag)
    return builder.build().dgram


def decode_message(dgram: bytes) -> WireMessage:
    """Decode a single OSC message datagram, keeping each argument's type tag."""
    try:
        message = OscMessage(dgram)
        _, index = osc_types.get_string(dgram, 0)
        type_tags = osc_types.get_string(dgram, index)[0] if index < len(dgram) else ","
    except (ParseError, osc_types.ParseError, UnicodeDecodeError) as e:
        raise ProtocolParseError(f"Undecodable OSC message: {e}", actual=dgram) from e

    tags = type_tags[1:] if type_tags.startswith(",") else ""
    if "[" in tags:
        raise ProtocolParseError(
            f"OSC arrays are not supported ({message.address} {type_tags})",
            address=message.address,
        )
    params = list(message.params)
    if len(tags) != len(params):
        raise ProtocolParseError(
            f"Type tags {type_tags!r} do not match {len(params)} decoded arguments",
            address=message.address, expected=len(tags), actual=len(params),
        )
    return WireMessage(message.address, tuple(OscArgument(t, v) for t, v in zip(tags, params)))


def decode_datagram(dgram: bytes) -> list[WireMessage]:
    """Decode a datagram holding either one message or a bundle of them."""
    if OscBundle.dgram_is_bundle(dgram):
        try:
            bundle = OscBundle(dgram)
        except Exception as e:
            raise ProtocolParseError(f"Undecodable OSC bundle: {e}", actual=dgram) from e
        messages = []
        for content in bundle:
            if isinstance(content, OscBundle):
                messages.extend(decode_datagram(content.dgram))
            else:
                messages.append(decode_message(content.dgram))
        return messages
    return [decode_message(dgram)]


# ---------------------------------------------------------------------------
# Reply correlation
# ---------------------------------------------------------------------------

def resolve_pending(pending: dict[str, PendingRequest], message: WireMessage) -> bool:
    """Complete the request waiting on the message's address, if any.

    Returns True if a waiting request received the message.
    """
    request = pending.pop(message.address, None)
    if request is None:
        return False
    request.cancel_timer()
    if request.future.done():
        return False
    request.future.set_result(message)
    return True


def _arg_values(args: Sequence[Any]) -> list[Any]:
    return [arg.value if isinstance(arg, OscArgument) else arg for arg in args]


def parse_info(args: Sequence[Any]) -> MixerInfo:
    """Parse the argument list of an /info reply."""
    values = _arg_values(args)
    if len(values) != INFO_FIELD_COUNT:
        raise ProtocolParseError(
            f"Invalid {INFO_ADDRESS} response: expected {INFO_FIELD_COUNT} fields, got {len(values)}",
            address=INFO_ADDRESS, expected=INFO_FIELD_COUNT, actual=len(values),
        )
    server_version, server_name, console_model, console_version = (str(v) for v in values)
    return MixerInfo(server_version, server_name, console_model, console_version)


def parse_status(args: Sequence[Any]) -> MixerStatus:
    """Parse the argument list of a /status reply."""
    values = _arg_values(args)
    if len(values) != STATUS_FIELD_COUNT:
        raise ProtocolParseError(
            f"Invalid {STATUS_ADDRESS} response: expected {STATUS_FIELD_COUNT} fields, got {len(values)}",
            address=STATUS_ADDRESS, expected=STATUS_FIELD_COUNT, actual=len(values),
        )
    state, ip_address, server_name = (str(v) for v in values)
    return MixerStatus(state, ip_address, server_name)


class MixerProtocol(asyncio.DatagramProtocol):
    _transport: Optional[asyncio.DatagramTransport]
    _state: ConnectionState
    _pending: dict[str, PendingRequest]
    _callback: MixerListener

    def __init__(self, callback: MixerListener, timeout: float = DEFAULT_TIMEOUT):
        self._logger = logging.getLogger(__name__)
        self._callback = callback
        self._timeout = timeout

        self._state = ConnectionState.DISCONNECTED
        self._transport = None
        self._config: Optional[ConnectionConfig] = None
        self.peer_name = None
        # Requests waiting for a reply, keyed by OSC address
        self._pending = {}

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def config(self) -> Optional[ConnectionConfig]:
        return self._config

    @property
    def timeout(self) -> float:
        """Seconds to wait for a reply before failing with RequestTimeout."""
        return self._timeout

    def is_pending(self, address: str) -> bool:
        return address in self._pending

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ========== Connection lifecycle ==========

    async def async_connect(self, config: ConnectionConfig):
        """Open a UDP socket on an ephemeral local port aimed at the mixer."""
        if self._state is not ConnectionState.DISCONNECTED:
            current = self._config
            raise AlreadyConnected(current.host if current else None,
                                   current.resolved_port if current else None)

        self._state = ConnectionState.CONNECTING
        self._config = config
        port = config.resolved_port
        self._logger.info(f"Connecting to {config.device_type.value} at {config.host}:{port}")
        loop = asyncio.get_running_loop()
        try:
            await loop.create_datagram_endpoint(
                lambda: self, local_addr=("0.0.0.0", 0), remote_addr=(config.host, port)
            )
        except (OSError, asyncio.CancelledError) as e:
            self._logger.error(f"Failed to open UDP socket to {config.host}:{port}: {e!r}")
            if self._state is ConnectionState.CONNECTING:
                self._state = ConnectionState.DISCONNECTED
            raise

    def connection_made(self, transport):
        """Method from asyncio.DatagramProtocol"""
        if self._state is not ConnectionState.CONNECTING:
            # disconnect() was called while the socket was still being opened
            transport.close()
            return
        self._transport = transport
        self._state = ConnectionState.CONNECTED
        self.peer_name = transport.get_extra_info("peername")
        self._logger.info(f"Connection Made: {self.peer_name}")
        self._callback.connected()

    def disconnect(self):
        """Close the socket and fail every request still waiting for a reply.

        Calling this while already disconnected does nothing.
        """
        if self._state is ConnectionState.DISCONNECTED:
            return
        transport = self._transport
        self._teardown()
        if transport is not None:
            transport.close()
        self._logger.info(f"Disconnected from {self.peer_name}")
        self._notify_disconnected()

    def connection_lost(self, exc):
        """Method from asyncio.DatagramProtocol"""
        # Only a socket we still consider live needs tearing down; a close we
        # initiated has already done so.
        if self._state is not ConnectionState.CONNECTED:
            return
        self._logger.error(f"Connection to {self.peer_name} lost: {exc!r}")
        self._teardown()
        self._notify_disconnected()

    def _teardown(self):
        self._state = ConnectionState.DISCONNECTED
        self._transport = None
        pending = list(self._pending.values())
        self._pending.clear()
        if pending:
            self._logger.warning(f"Rejecting {len(pending)} pending requests: connection closed")
        for request in pending:
            request.cancel_timer()
            if not request.future.done():
                request.future.set_exception(ConnectionClosed(request.address))

    def _notify_disconnected(self):
        try:
            self._callback.disconnected()
        except Exception as e:
            self._logger.error(f"Exception in disconnected() callback: {e}")

    def _notify_message(self, message: WireMessage):
        # A failing listener must not keep the reply from its waiting request
        try:
            self._callback.message_received(message)
        except Exception as e:
            self._logger.error(f"Exception in message_received() callback for {message.address}: {e}")

    # ========== Inbound ==========

    def datagram_received(self, data, addr):
        """Method from asyncio.DatagramProtocol"""
        self._logger.debug(f"datagram_received from {addr}: {data!r}")
        try:
            messages = decode_datagram(data)
        except ProtocolParseError as e:
            self._logger.warning(f"Ignoring undecodable datagram from {addr}: {e}")
            self._callback.error(str(e))
            return

        for message in messages:
            self._logger.info(f"RECV: {message.address} {message.values}")
            self._notify_message(message)
            if not resolve_pending(self._pending, message):
                self._logger.debug(f"No pending request for {message.address}")

    def error_received(self, exc):
        """Method from asyncio.DatagramProtocol"""
        self._logger.error(f"Socket error: {exc!r}")
        self._callback.error(f"Socket error: {exc}")

    # ========== Outbound ==========

    async def send_message(self, address: str, args: Optional[Sequence[Any]] = None,
                           wait_for_reply: bool = True) -> Optional[list[OscArgument]]:
        """Send an OSC message, optionally waiting for the mixer's reply.

        With wait_for_reply the call returns the argument list of the next
        message the mixer sends to the same address, or raises RequestTimeout
        once the timeout elapses. Without it the datagram is sent and None is
        returned immediately.
        """
        if self._state is not ConnectionState.CONNECTED or self._transport is None:
            raise NotConnected(address)
        args = list(args or [])
        dgram = encode_message(address, args)

        if not wait_for_reply:
            self._logger.info(f"SEND: {address} {_arg_values(args)}")
            self._transport.sendto(dgram)
            return None

        if address in self._pending:
            raise RequestAlreadyPending(address)

        loop = asyncio.get_running_loop()
        request = PendingRequest(address, loop.time() + self._timeout, loop.create_future())
        request.timer = loop.call_at(request.deadline, self._expire_request, request)
        self._pending[address] = request
        self._logger.debug(f"Registered response handler for {address} ({len(self._pending)} pending)")
        try:
            self._logger.info(f"SEND: {address} {_arg_values(args)} (awaiting reply)")
            self._transport.sendto(dgram)
            message = await request.future
        finally:
            request.cancel_timer()
            if self._pending.get(address) is request:
                del self._pending[address]
        return list(message.args)

    def _expire_request(self, request: PendingRequest):
        if self._pending.get(request.address) is request:
            del self._pending[request.address]
        if not request.future.done():
            self._logger.warning(
                f"TIMEOUT: No response for {request.address} after {self._timeout}s, "
                f"pending: {list(self._pending)}"
            )
            request.future.set_exception(RequestTimeout(request.address, self._timeout))

    async def get_parameter(self, address: str):
        """Query a parameter and return the first value of the reply."""
        args = await self.send_message(address, wait_for_reply=True)
        if not args:
            raise NoValueReturned(address)
        return args[0].value

    async def set_parameter(self, address: str, value):
        """Write a parameter. The mixer does not acknowledge writes."""
        await self.send_message(address, [value], wait_for_reply=False)

    async def get_info(self) -> MixerInfo:
        args = await self.send_message(INFO_ADDRESS)
        return parse_info(args)

    async def get_status(self) -> MixerStatus:
        args = await self.send_message(STATUS_ADDRESS)
        return parse_status(args)
