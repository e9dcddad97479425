"""X32 Mixer - channel, bus, main, FX and DCA parameter access.

This module contains the high-level mixer abstraction:
- Range validation against the connected model's DeviceProfile
- Address building for channel/bus/fx/dca/main parameters
- Volume in dB or linear fader units, mute, pan, color and name helpers
- State snapshots that read several parameters concurrently
- MixerProtocol instance creation and management

Every parameter method validates its indices before any datagram is sent,
so a bad channel number fails with RangeValidationError even while
disconnected.
"""

import asyncio
import logging
from typing import Any, Optional, Union

from pyx32.converters import (
    MAX_DB,
    MIN_DB,
    db_to_fader,
    fader_to_db,
    format_color,
    format_db,
    get_color_value,
    pan_to_lr,
    parse_pan,
)
from pyx32.device import DeviceProfile, DeviceType, build_address, get_profile
from pyx32.errors import RangeValidationError
from pyx32.listener import MixerListener, MultiplexingListener
from pyx32.protocol import (
    DEFAULT_TIMEOUT,
    ConnectionConfig,
    ConnectionState,
    MixerInfo,
    MixerProtocol,
    MixerStatus,
)

UNIT_LINEAR = "linear"
UNIT_DB = "db"

EQ_BAND_COUNT = 4
EQ_PARAMETERS = ("f", "g", "q")
FX_PARAMETER_COUNT = 64
# Most X32 effects use parameter 02 as their bypass switch
FX_BYPASS_PARAMETER = 2


def _validate_index(kind: str, value: int, maximum: int):
    if isinstance(value, bool) or not isinstance(value, int) or not (1 <= value <= maximum):
        raise RangeValidationError(
            f"{kind} must be between 1 and {maximum}", value=value, minimum=1, maximum=maximum
        )


def _join(base: str, param: str) -> str:
    return f"{base}/{param.strip('/')}"


class X32Mixer:
    """High-level X32/M32/XR mixer control.

    This class:
    - Creates and manages the MixerProtocol instance
    - Resolves the DeviceProfile for the configured model
    - Validates channel/bus/fx/dca numbers against that profile
    - Converts between dB, pan notation, color names and wire values
    """

    def __init__(self, host: Optional[str] = None, port: Optional[int] = None,
                 device_type: Optional[Union[str, DeviceType]] = None,
                 timeout: float = DEFAULT_TIMEOUT, config: Optional[ConnectionConfig] = None):
        """Initialize mixer.

        Args:
            host: Mixer hostname or IP (falls back to MIXER_HOST)
            port: OSC port (falls back to MIXER_PORT, then the model default)
            device_type: Model name such as "X32", "M32" or "XR18" (falls back to MIXER_TYPE)
            timeout: Seconds to wait for a reply to a query
            config: Complete connection config, used instead of the arguments above
        """
        self._logger = logging.getLogger(__name__)
        self._config: ConnectionConfig = config or ConnectionConfig.from_env(host, port, device_type)
        self._profile: DeviceProfile = get_profile(self._config.device_type)

        # Create multiplexing listener for external listeners
        self._multiplex_callback = MultiplexingListener()

        # Create protocol instance
        self._protocol = MixerProtocol(self._multiplex_callback, timeout=timeout)

    # ========== Connection ==========

    @property
    def protocol(self) -> MixerProtocol:
        return self._protocol

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def profile(self) -> DeviceProfile:
        """Channel/bus counts and address layout of the configured model."""
        return self._profile

    @property
    def state(self) -> ConnectionState:
        return self._protocol.state

    @property
    def connected(self) -> bool:
        return self._protocol.connected

    def register_listener(self, listener: MixerListener):
        """Register external listener for mixer events."""
        self._multiplex_callback.register_listener(listener)

    def unregister_listener(self, listener: MixerListener):
        """Unregister external listener."""
        self._multiplex_callback.unregister_listener(listener)

    async def async_connect(self):
        """Connect to the mixer."""
        await self._protocol.async_connect(self._config)

    def close(self):
        """Close the connection, failing any queries still waiting for a reply."""
        self._protocol.disconnect()

    async def get_info(self) -> MixerInfo:
        return await self._protocol.get_info()

    async def get_status(self) -> MixerStatus:
        return await self._protocol.get_status()

    async def get_parameter(self, address: str):
        """Read a parameter by raw OSC address, e.g. "/ch/01/mix/fader"."""
        return await self._protocol.get_parameter(address)

    async def set_parameter(self, address: str, value):
        """Write a parameter by raw OSC address."""
        await self._protocol.set_parameter(address, value)

    # ========== Address helpers ==========

    def channel_address(self, channel: int, param: str) -> str:
        _validate_index("Channel", channel, self._profile.channel_count)
        return _join(build_address(self._profile, "channel", {"ch": channel}), param)

    def bus_address(self, bus: int, param: str) -> str:
        _validate_index("Bus", bus, self._profile.bus_count)
        return _join(build_address(self._profile, "bus", {"bus": bus}), param)

    def fx_address(self, fx: int, param: str) -> str:
        _validate_index("FX", fx, self._profile.fx_slot_count)
        return _join(build_address(self._profile, "fx", {"fx": fx}), param)

    def dca_address(self, dca: int, param: str) -> str:
        _validate_index("DCA", dca, self._profile.dca_count)
        return _join(build_address(self._profile, "dca", {"dca": dca}), param)

    def main_address(self, param: str) -> str:
        return _join(build_address(self._profile, "main"), param)

    # ========== Raw parameter access ==========

    async def get_channel_parameter(self, channel: int, param: str):
        """Read a channel parameter such as "mix/fader" or "config/name"."""
        return await self._protocol.get_parameter(self.channel_address(channel, param))

    async def set_channel_parameter(self, channel: int, param: str, value):
        await self._protocol.set_parameter(self.channel_address(channel, param), value)

    async def get_bus_parameter(self, bus: int, param: str):
        return await self._protocol.get_parameter(self.bus_address(bus, param))

    async def set_bus_parameter(self, bus: int, param: str, value):
        await self._protocol.set_parameter(self.bus_address(bus, param), value)

    async def get_fx_parameter(self, fx: int, param: str):
        return await self._protocol.get_parameter(self.fx_address(fx, param))

    async def set_fx_parameter(self, fx: int, param: str, value):
        await self._protocol.set_parameter(self.fx_address(fx, param), value)

    async def get_dca_parameter(self, dca: int, param: str):
        return await self._protocol.get_parameter(self.dca_address(dca, param))

    async def set_dca_parameter(self, dca: int, param: str, value):
        await self._protocol.set_parameter(self.dca_address(dca, param), value)

    async def get_main_parameter(self, param: str):
        """Read a main output parameter (/main/st on the X32, /lr on XR models)."""
        return await self._protocol.get_parameter(self.main_address(param))

    async def set_main_parameter(self, param: str, value):
        await self._protocol.set_parameter(self.main_address(param), value)

    # ========== Levels ==========

    @staticmethod
    def fader_value(value: float, unit: str = UNIT_LINEAR) -> float:
        """Validate a level given in unit and return it as a linear fader value."""
        if unit == UNIT_DB:
            if not (MIN_DB <= value <= MAX_DB):
                raise RangeValidationError(
                    f"Invalid dB value: {value}. Must be between -90 and +10 dB",
                    value=value, minimum=MIN_DB, maximum=MAX_DB,
                )
            return db_to_fader(value)
        if unit == UNIT_LINEAR:
            if not (0.0 <= value <= 1.0):
                raise RangeValidationError(
                    f"Invalid linear value: {value}. Must be between 0.0 and 1.0",
                    value=value, minimum=0.0, maximum=1.0,
                )
            return float(value)
        raise RangeValidationError(f"Invalid unit {unit!r}, must be '{UNIT_LINEAR}' or '{UNIT_DB}'")

    async def _set_level(self, address: str, value: float, unit: str) -> float:
        fader = self.fader_value(value, unit)
        self._logger.info(f"Level request - {address} to {format_db(fader_to_db(fader))} (fader {fader:.3f})")
        await self._protocol.set_parameter(address, fader)
        return fader

    async def set_channel_volume(self, channel: int, value: float, unit: str = UNIT_LINEAR) -> float:
        """Set a channel fader. Returns the linear fader value written."""
        return await self._set_level(self.channel_address(channel, "mix/fader"), value, unit)

    async def set_bus_volume(self, bus: int, value: float, unit: str = UNIT_LINEAR) -> float:
        return await self._set_level(self.bus_address(bus, "mix/fader"), value, unit)

    async def set_main_volume(self, value: float, unit: str = UNIT_LINEAR) -> float:
        return await self._set_level(self.main_address("mix/fader"), value, unit)

    async def set_dca_volume(self, dca: int, value: float, unit: str = UNIT_LINEAR) -> float:
        return await self._set_level(self.dca_address(dca, "fader"), value, unit)

    async def set_channel_send(self, channel: int, bus: int, value: float,
                               unit: str = UNIT_LINEAR) -> float:
        """Set how much of a channel is sent to a mix bus."""
        _validate_index("Bus", bus, self._profile.bus_count)
        address = self.channel_address(channel, f"mix/{bus:02d}/level")
        return await self._set_level(address, value, unit)

    # ========== Mute ==========

    # The mixer models mute as the inverse of the "on" switch: 0 = muted.

    async def set_channel_mute(self, channel: int, muted: bool):
        await self._protocol.set_parameter(self.channel_address(channel, "mix/on"), 0 if muted else 1)

    async def set_bus_mute(self, bus: int, muted: bool):
        await self._protocol.set_parameter(self.bus_address(bus, "mix/on"), 0 if muted else 1)

    async def set_main_mute(self, muted: bool):
        await self._protocol.set_parameter(self.main_address("mix/on"), 0 if muted else 1)

    async def set_dca_mute(self, dca: int, muted: bool):
        await self._protocol.set_parameter(self.dca_address(dca, "on"), 0 if muted else 1)

    # ========== Channel strip ==========

    async def set_channel_pan(self, channel: int, pan: Union[str, int, float]) -> float:
        """Set channel pan from a percentage (-100..100), "L50"/"C"/"R25" notation or linear value."""
        address = self.channel_address(channel, "mix/pan")
        value = parse_pan(pan)
        if value is None:
            raise RangeValidationError(
                f"Invalid pan value: {pan!r}. Use -100..100, L<0-100>, C or R<0-100>", value=pan
            )
        await self._protocol.set_parameter(address, float(value))
        return value

    async def set_channel_name(self, channel: int, name: str):
        await self._protocol.set_parameter(self.channel_address(channel, "config/name"), str(name))

    async def set_channel_color(self, channel: int, color: Union[str, int]) -> int:
        """Set the scribble strip color by name ("red", "blue-inv") or code 0-15."""
        address = self.channel_address(channel, "config/color")
        code = get_color_value(color)
        if code is None:
            raise RangeValidationError(f"Invalid color: {color!r}", value=color, minimum=0, maximum=15)
        await self._protocol.set_parameter(address, code)
        return code

    async def set_channel_gain(self, channel: int, gain: float):
        """Set the preamp gain as a linear 0.0-1.0 value."""
        address = self.channel_address(channel, "head/gain")
        if not (0.0 <= gain <= 1.0):
            raise RangeValidationError(
                f"Invalid gain: {gain}. Must be between 0.0 and 1.0", value=gain, minimum=0.0, maximum=1.0
            )
        await self._protocol.set_parameter(address, float(gain))

    async def set_channel_eq_band(self, channel: int, band: int, parameter: str, value: float):
        """Set frequency (f), gain (g) or width (q) of one of the four EQ bands."""
        _validate_index("EQ band", band, EQ_BAND_COUNT)
        if parameter not in EQ_PARAMETERS:
            raise RangeValidationError(
                f"Invalid EQ parameter {parameter!r}, must be one of {', '.join(EQ_PARAMETERS)}",
                value=parameter,
            )
        await self._protocol.set_parameter(self.channel_address(channel, f"eq/{band}/{parameter}"), value)

    # ========== FX ==========

    async def set_fx_parameter_value(self, fx: int, parameter: int, value: float):
        """Set numbered parameter 1-64 of an FX rack to a linear 0.0-1.0 value."""
        _validate_index("FX parameter", parameter, FX_PARAMETER_COUNT)
        if not (0.0 <= value <= 1.0):
            raise RangeValidationError(
                f"Invalid parameter value: {value}. Must be between 0.0 and 1.0",
                value=value, minimum=0.0, maximum=1.0,
            )
        await self._protocol.set_parameter(self.fx_address(fx, f"par/{parameter:02d}"), float(value))

    async def set_fx_bypass(self, fx: int, bypass: bool):
        address = self.fx_address(fx, f"par/{FX_BYPASS_PARAMETER:02d}")
        await self._protocol.set_parameter(address, 1 if bypass else 0)

    async def get_fx_state(self, fx: int, parameter_count: int = 6) -> dict[str, Any]:
        """Read an FX rack's type and its first few parameters."""
        _validate_index("FX parameter", parameter_count, FX_PARAMETER_COUNT)
        addresses = [self.fx_address(fx, "type")] + [
            self.fx_address(fx, f"par/{i:02d}") for i in range(1, parameter_count + 1)
        ]
        fx_type, *parameters = await asyncio.gather(
            *(self._protocol.get_parameter(address) for address in addresses)
        )
        return {
            "fx": fx,
            "type": fx_type,
            "parameters": {f"{i:02d}": value for i, value in enumerate(parameters, start=1)},
        }

    # ========== State snapshots ==========

    async def _read_strip(self, addresses: dict[str, str]) -> dict[str, Any]:
        # Distinct addresses, so the reads can all be in flight together
        values = await asyncio.gather(*(self._protocol.get_parameter(a) for a in addresses.values()))
        return dict(zip(addresses.keys(), values))

    @staticmethod
    def _level_fields(raw: dict[str, Any]) -> dict[str, Any]:
        fader = float(raw["fader"])
        return {
            "fader": fader,
            "db": fader_to_db(fader),
            "level": format_db(fader_to_db(fader)),
            "muted": int(raw["on"]) == 0,
        }

    async def get_channel_state(self, channel: int) -> dict[str, Any]:
        """Read name, color, fader, mute and pan of a channel."""
        raw = await self._read_strip({
            "fader": self.channel_address(channel, "mix/fader"),
            "on": self.channel_address(channel, "mix/on"),
            "pan": self.channel_address(channel, "mix/pan"),
            "name": self.channel_address(channel, "config/name"),
            "color": self.channel_address(channel, "config/color"),
        })
        state = {"channel": channel, "name": raw["name"], "color": format_color(int(raw["color"]))}
        state.update(self._level_fields(raw))
        state["pan"] = pan_to_lr(float(raw["pan"]))
        return state

    async def get_bus_state(self, bus: int) -> dict[str, Any]:
        raw = await self._read_strip({
            "fader": self.bus_address(bus, "mix/fader"),
            "on": self.bus_address(bus, "mix/on"),
            "name": self.bus_address(bus, "config/name"),
        })
        state = {"bus": bus, "name": raw["name"]}
        state.update(self._level_fields(raw))
        return state

    async def get_main_state(self) -> dict[str, Any]:
        raw = await self._read_strip({
            "fader": self.main_address("mix/fader"),
            "on": self.main_address("mix/on"),
            "pan": self.main_address("mix/pan"),
        })
        state = self._level_fields(raw)
        state["pan"] = pan_to_lr(float(raw["pan"]))
        return state
