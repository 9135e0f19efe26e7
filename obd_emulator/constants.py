"""Constants used across the obd-emulator package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "obd-emulator"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / f".{APP_NAME}" / DEFAULT_CONFIG_FILENAME

DEFAULT_LISTEN_HOST = "0.0.0.0"
DEFAULT_LISTEN_PORT = 35000

DEFAULT_ELM_NAME = "ELM327"
DEFAULT_ELM_VERSION = "v1.2"
DEFAULT_DEVICE_DESCRIPTION = "OBDII to RS232 Interpreter"

PROMPT = ">"
NO_DATA = "NO DATA"
UNKNOWN_COMMAND = "?"
OK = "OK"

# Physical CAN id of the engine ECU reply, shown when headers are enabled.
RESPONSE_HEADER = "7E8"
