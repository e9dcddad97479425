"""pyx32 Python Package

Python library for controlling Behringer X32/M32 and XR18/XR16/XR12 mixers over OSC.
"""

from pyx32.device import DeviceType, get_profile
from pyx32.listener import LoggingListener, MixerListener
from pyx32.mixer import X32Mixer
from pyx32.protocol import ConnectionConfig, ConnectionState

__all__ = [
    "ConnectionConfig",
    "ConnectionState",
    "DeviceType",
    "LoggingListener",
    "MixerListener",
    "X32Mixer",
    "get_profile",
]
