"""Command-line interface for obd-emulator."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from . import constants
from .app import EmulatorApp
from .config import load_config
from .telemetry.codec import TelemetryCodec
from .telemetry.sample import SAMPLE_FIELDS, TelemetrySample

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="obd-emulator", description="ELM327 OBD-II adapter emulator over TCP"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    start_parser = subparsers.add_parser("start", help="Start the emulator")
    start_parser.add_argument("--port", type=int, help="Override the listen port")

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    encode_parser = subparsers.add_parser(
        "encode", help="Print the Mode 01 reply for a PID using the default sample"
    )
    encode_parser.add_argument("pid", help="Mode 01 request, e.g. 010C")
    encode_parser.add_argument(
        "--set",
        action="append",
        default=[],
        metavar="FIELD=VALUE",
        help="Override a sample field before encoding (repeatable)",
    )

    return parser


def _encode(pid: str, overrides: list[str]) -> int:
    changes = {}
    for item in overrides:
        name, _, value = item.partition("=")
        name = name.strip()
        if name not in SAMPLE_FIELDS or not value:
            LOGGER.error("Invalid override %r", item)
            return 2
        try:
            changes[name] = float(value)
        except ValueError:
            LOGGER.error("Override %r is not numeric", item)
            return 2

    sample = TelemetrySample().replace(**changes)
    payload = TelemetryCodec().encode(pid.upper(), sample)
    if payload is None:
        print(constants.NO_DATA)
        return 1
    print(payload)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "encode":
        return _encode(args.pid, args.set)

    config = load_config(args.config)

    if args.command == "start":
        if args.port is not None:
            config.server.port = args.port
        EmulatorApp.start(config)
        return 0

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                print(f"{key} = {value}")
            print()
        return 0

    LOGGER.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    sys.exit(main())
