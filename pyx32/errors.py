"""Exceptions raised by pyx32."""

from typing import Optional


class MixerError(Exception):
    """Base class for all pyx32 errors."""


class NotConnected(MixerError):
    def __init__(self, address: Optional[str] = None):
        self.address = address
        message = "Not connected to mixer"
        if address:
            message = f"{message} (while sending {address})"
        super().__init__(message)


class AlreadyConnected(MixerError):
    def __init__(self, host: Optional[str] = None, port: Optional[int] = None):
        self.host = host
        self.port = port
        if host is not None:
            super().__init__(f"Already connected to mixer at {host}:{port}")
        else:
            super().__init__("Already connected to mixer")


class ConnectionClosed(MixerError):
    """Raised into requests that were still waiting when the connection closed."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Connection closed while waiting for response from {address}")


class RequestTimeout(MixerError, TimeoutError):
    def __init__(self, address: str, timeout: float):
        self.address = address
        self.timeout = timeout
        super().__init__(f"Timeout waiting for response from {address} after {timeout}s")


class RequestAlreadyPending(MixerError):
    """Raised when a reply is already being awaited for the same address.

    Replies carry no correlation token, only the address, so a second waiter
    could not tell its reply apart from the first one's.
    """

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"A request to {address} is already waiting for a response")


class NoValueReturned(MixerError):
    def __init__(self, address: str):
        self.address = address
        super().__init__(f"No value returned from {address}")


class RangeValidationError(MixerError, ValueError):
    def __init__(self, message: str, value=None, minimum=None, maximum=None):
        self.value = value
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(message)


class UnknownDeviceType(MixerError, ValueError):
    def __init__(self, device_type):
        self.device_type = device_type
        super().__init__(f"Unknown device type: {device_type}")


class UnsupportedTemplate(MixerError, KeyError):
    def __init__(self, template_key: str, device_type):
        self.template_key = template_key
        self.device_type = device_type
        super().__init__(template_key, device_type)

    def __str__(self):
        return f"Address template '{self.template_key}' not available for {self.device_type}"


class ProtocolParseError(MixerError):
    def __init__(self, message: str, address: Optional[str] = None, expected=None, actual=None):
        self.address = address
        self.expected = expected
        self.actual = actual
        super().__init__(message)
