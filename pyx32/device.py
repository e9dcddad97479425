"""Console models and their OSC address layouts.

The X32/M32 full-size consoles and the XR18/XR16/XR12 rack mixers speak the
same OSC dialect but differ in channel/bus counts, default port and a few
base addresses (the main stereo bus is /main/st on the X32 and /lr on the
rack mixers). Each model is described by a read-only DeviceProfile built
once at import time.
"""

import re
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Union

from pyx32.errors import UnknownDeviceType, UnsupportedTemplate

X32_PORT = 10023
XR_PORT = 10024

# FX racks are addressed 1-8 on every model
FX_SLOT_COUNT = 8

PLACEHOLDER = re.compile(r"\{(\w+)\}")


class DeviceType(Enum):
    X32 = "X32"
    XR18 = "XR18"
    XR16 = "XR16"
    XR12 = "XR12"


@dataclass(frozen=True)
class DeviceProfile:
    type: DeviceType
    default_port: int
    channel_count: int
    bus_count: int
    fx_slot_count: int
    dca_count: int
    fx_send_count: int
    address_templates: Mapping[str, str]

    @property
    def main_address(self) -> str:
        """Base address of the main stereo output."""
        return self.address_templates["main"]

    def has_template(self, template_key: str) -> bool:
        return template_key in self.address_templates


_COMMON_TEMPLATES = {
    "channel": "/ch/{ch}",
    "bus": "/bus/{bus}",
    "fx": "/fx/{fx}",
    "dca": "/dca/{dca}",
}

_RACK_TEMPLATES = dict(
    _COMMON_TEMPLATES,
    main="/lr",
    fxSend="/fxsend/{fxsend}",
    auxIn="/rtn/aux",
    fxReturn="/rtn/{fxrtn}",
)


def _rack_profile(device_type: DeviceType, channels: int, buses: int) -> DeviceProfile:
    return DeviceProfile(
        type=device_type,
        default_port=XR_PORT,
        channel_count=channels,
        bus_count=buses,
        fx_slot_count=FX_SLOT_COUNT,
        dca_count=4,
        fx_send_count=4,
        address_templates=MappingProxyType(dict(_RACK_TEMPLATES)),
    )


X32_PROFILE = DeviceProfile(
    type=DeviceType.X32,
    default_port=X32_PORT,
    channel_count=32,
    bus_count=16,
    fx_slot_count=FX_SLOT_COUNT,
    dca_count=8,
    fx_send_count=0,
    address_templates=MappingProxyType(dict(
        _COMMON_TEMPLATES,
        main="/main/st",
        fxReturn="/fxrtn/{fxrtn}",
    )),
)
XR18_PROFILE = _rack_profile(DeviceType.XR18, channels=16, buses=6)
XR16_PROFILE = _rack_profile(DeviceType.XR16, channels=16, buses=6)
XR12_PROFILE = _rack_profile(DeviceType.XR12, channels=12, buses=2)

_PROFILES: Mapping[DeviceType, DeviceProfile] = MappingProxyType({
    DeviceType.X32: X32_PROFILE,
    DeviceType.XR18: XR18_PROFILE,
    DeviceType.XR16: XR16_PROFILE,
    DeviceType.XR12: XR12_PROFILE,
})

# Names accepted for each model, upper-cased
_ALIASES = {
    "X32": DeviceType.X32,
    "M32": DeviceType.X32,
    "XR18": DeviceType.XR18,
    "X18": DeviceType.XR18,
    "XR16": DeviceType.XR16,
    "XR12": DeviceType.XR12,
}


def parse_device_type(value: Optional[Union[str, DeviceType]]) -> DeviceType:
    """Resolve a model name such as "m32" or "XR18" to a DeviceType.

    An empty value selects the X32, which is also what an M32 reports as.
    """
    if isinstance(value, DeviceType):
        return value
    if not value:
        return DeviceType.X32
    try:
        return _ALIASES[value.strip().upper()]
    except KeyError:
        raise UnknownDeviceType(value) from None


def get_profile(device_type: Union[str, DeviceType]) -> DeviceProfile:
    """Return the profile for a device type or model alias."""
    if not isinstance(device_type, DeviceType):
        if not device_type:
            raise UnknownDeviceType(device_type)
        device_type = parse_device_type(device_type)
    try:
        return _PROFILES[device_type]
    except KeyError:
        raise UnknownDeviceType(device_type) from None


def build_address(
    profile: DeviceProfile,
    template_key: str,
    substitutions: Optional[Mapping[str, Union[int, str]]] = None,
) -> str:
    """Expand one of the profile's address templates.

    Integer substitutions are zero-padded to two digits (channel 1 becomes
    "01"); strings are inserted as given.

    >>> build_address(X32_PROFILE, "channel", {"ch": 1})
    '/ch/01'
    """
    template = profile.address_templates.get(template_key)
    if template is None:
        raise UnsupportedTemplate(template_key, profile.type.value)

    values = substitutions or {}

    def _substitute(match):
        name = match.group(1)
        if name not in values:
            return match.group(0)
        value = values[name]
        if isinstance(value, int) and not isinstance(value, bool):
            return f"{value:02d}"
        return str(value)

    return PLACEHOLDER.sub(_substitute, template)
