"""
Main command-line interface for pyx32.

This script provides a CLI to query and set parameters on an X32/M32 or
XR-series mixer. Connection settings default to the MIXER_HOST, MIXER_PORT
and MIXER_TYPE environment variables.
"""

import argparse
import asyncio
import logging
import os

from pyx32.converters import fader_to_db, format_db
from pyx32.errors import MixerError
from pyx32.mixer import X32Mixer
from pyx32.protocol import DEFAULT_TIMEOUT


def coerce_value(text: str):
    """Turn a command-line value into int, float or str, in that order."""
    for convert in (int, float):
        try:
            return convert(text)
        except ValueError:
            pass
    return text


async def show_info(mixer: X32Mixer):
    info = await mixer.get_info()
    status = await mixer.get_status()
    print(f"Console:  {info.console_model} (firmware {info.console_version})")
    print(f"Server:   {info.server_name} {info.server_version}")
    print(f"State:    {status.state}")
    print(f"Address:  {status.ip_address}")


async def show_status(mixer: X32Mixer):
    """Print name, level, mute and pan for every channel and bus."""
    profile = mixer.profile
    print(f"{profile.type.value}: {profile.channel_count} channels, {profile.bus_count} buses")
    print("-" * 72)
    for channel in range(1, profile.channel_count + 1):
        state = await mixer.get_channel_state(channel)
        mute = "MUTED" if state["muted"] else ""
        label = f"Ch {channel:02d} ({state['name']}):"
        print(f"{label:24s} {state['level']:>10s} | Pan: {state['pan']:>4s} | {state['color']:10s} {mute}")
    print("-" * 72)
    for bus in range(1, profile.bus_count + 1):
        state = await mixer.get_bus_state(bus)
        mute = "MUTED" if state["muted"] else ""
        label = f"Bus {bus:02d} ({state['name']}):"
        print(f"{label:24s} {state['level']:>10s} {mute}")
    print("-" * 72)
    main = await mixer.get_main_state()
    print(f"{'Main:':24s} {main['level']:>10s} | Pan: {main['pan']:>4s} {'MUTED' if main['muted'] else ''}")


async def run(args) -> int:
    mixer = X32Mixer(args.host, args.port, args.type, timeout=args.timeout)
    print(f"Connecting to {mixer.config.device_type.value} at {mixer.config.host}:{mixer.config.resolved_port}...")
    try:
        await mixer.async_connect()
        if args.command == "info":
            await show_info(mixer)
        elif args.command == "status":
            await show_status(mixer)
        elif args.command == "get":
            print(await mixer.get_parameter(args.address))
        elif args.command == "set":
            await mixer.set_parameter(args.address, coerce_value(args.value))
            print(f"Set {args.address} to {args.value}")
        elif args.command == "channel":
            if args.value is None:
                value = await mixer.get_channel_parameter(args.channel, args.param)
                if args.param == "mix/fader":
                    print(f"{value} ({format_db(fader_to_db(float(value)))})")
                else:
                    print(value)
            else:
                await mixer.set_channel_parameter(args.channel, args.param, coerce_value(args.value))
                print(f"Set channel {args.channel} {args.param} to {args.value}")
    except MixerError as e:
        print(f"Error: {e}")
        return 1
    finally:
        mixer.close()
    return 0


def main():
    parser = argparse.ArgumentParser(description="Control X32/M32 and XR-series mixers over OSC")
    parser.add_argument("--host", default=os.environ.get("MIXER_HOST"), help="Mixer hostname or IP (default: $MIXER_HOST)")
    parser.add_argument("--port", type=int, default=None, help="OSC port (default: $MIXER_PORT or 10023 for X32, 10024 for XR)")
    parser.add_argument("--type", default=None, help="Mixer model: X32, M32, XR18, XR16, XR12 (default: $MIXER_TYPE or X32)")
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT, help=f"Reply timeout in seconds (default: {DEFAULT_TIMEOUT})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser("info", help="Show console model, firmware and server status")
    subparsers.add_parser("status", help="Show level, mute and pan of all channels and buses")

    get_parser = subparsers.add_parser("get", help="Read a parameter by OSC address")
    get_parser.add_argument("address", help="OSC address, e.g. /ch/01/mix/fader")

    set_parser = subparsers.add_parser("set", help="Write a parameter by OSC address")
    set_parser.add_argument("address", help="OSC address, e.g. /ch/01/mix/fader")
    set_parser.add_argument("value", help="Value (int, float or string)")

    channel_parser = subparsers.add_parser("channel", help="Read or write a channel parameter")
    channel_parser.add_argument("channel", type=int, help="Channel number")
    channel_parser.add_argument("param", help="Parameter path, e.g. mix/fader or config/name")
    channel_parser.add_argument("value", nargs="?", help="Value to set; omit to read")

    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    if args.command is None:
        parser.print_help()
        return
    try:
        raise SystemExit(asyncio.run(run(args)))
    except (MixerError, OSError, ValueError) as e:
        parser.error(str(e))


if __name__ == "__main__":
    main()
