"""Configuration loader for obd-emulator."""

from __future__ import annotations

import logging
import re
from configparser import ConfigParser
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from . import constants

LOGGER = logging.getLogger(__name__)

LIVE_FIELDS = (
    "engine_rpm",
    "vehicle_speed",
    "coolant_temp",
    "intake_temp",
    "throttle_position",
    "fuel_level",
)

DEFAULT_STATIC_VALUES: Dict[str, float] = {
    "engine_rpm": 2000.0,
    "vehicle_speed": 60.0,
    "coolant_temp": 85.0,
    "intake_temp": 30.0,
    "throttle_position": 25.0,
    "fuel_level": 50.0,
}

DEFAULT_RANDOM_RANGES: Dict[str, Tuple[float, float]] = {
    "engine_rpm": (800.0, 4000.0),
    "vehicle_speed": (0.0, 120.0),
    "coolant_temp": (70.0, 100.0),
    "intake_temp": (20.0, 45.0),
    "throttle_position": (0.0, 80.0),
    "fuel_level": (20.0, 100.0),
}

DEFAULT_STORED_DTCS = ["P0301", "P0420"]
DEFAULT_PENDING_DTCS = ["P0171"]
DEFAULT_PERMANENT_DTCS = ["P0301"]

LIVE_MODES = ("random", "static")
PROTOCOL_DIGITS = "0123456789ABC"
DTC_CODE = re.compile(r"^[PCBU][0-3][0-9A-F]{3}$")


@dataclass(slots=True)
class AdapterConfig:
    elm_name: str = constants.DEFAULT_ELM_NAME
    elm_version: str = constants.DEFAULT_ELM_VERSION
    device_description: str = constants.DEFAULT_DEVICE_DESCRIPTION
    device_id: str = constants.DEFAULT_ELM_NAME
    echo: bool = False
    headers: bool = False
    spaces: bool = True
    linefeed: bool = False
    double_linefeed: bool = False
    protocol: str = "0"  # 0 = automatic detection


@dataclass(slots=True)
class ServerConfig:
    host: str = constants.DEFAULT_LISTEN_HOST
    port: int = constants.DEFAULT_LISTEN_PORT
    autostart: bool = True


@dataclass(slots=True)
class LiveDataConfig:
    mode: str = "random"
    tick_seconds: float = 1.0
    seed: Optional[int] = None
    static: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_STATIC_VALUES))
    random_ranges: Dict[str, Tuple[float, float]] = field(
        default_factory=lambda: dict(DEFAULT_RANDOM_RANGES)
    )


@dataclass(slots=True)
class DtcConfig:
    stored: List[str] = field(default_factory=lambda: list(DEFAULT_STORED_DTCS))
    pending: List[str] = field(default_factory=lambda: list(DEFAULT_PENDING_DTCS))
    permanent: List[str] = field(default_factory=lambda: list(DEFAULT_PERMANENT_DTCS))


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_wire: bool = False


@dataclass(slots=True)
class HealthConfig:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 0


@dataclass(slots=True)
class EmulatorConfig:
    adapter: AdapterConfig
    server: ServerConfig
    live: LiveDataConfig
    dtc: DtcConfig
    logging: LoggingConfig
    health: HealthConfig
    raw: ConfigParser
    path: Path


def _parse_codes(value: Optional[str], *, default: Iterable[str]) -> List[str]:
    if value is None:
        return list(default)
    codes: List[str] = []
    for item in value.split(","):
        code = item.strip().upper()
        if not code:
            continue
        if not DTC_CODE.match(code):
            LOGGER.warning("Ignoring invalid trouble code %r in configuration", item)
            continue
        codes.append(code)
    return codes


def _parse_range(
    value: Optional[str], *, default: Tuple[float, float]
) -> Tuple[float, float]:
    if not value:
        return default
    parts = [item.strip() for item in value.split(",") if item.strip()]
    if len(parts) != 2:
        LOGGER.warning("Ignoring malformed range %r; using %s", value, default)
        return default
    try:
        low, high = float(parts[0]), float(parts[1])
    except ValueError:
        LOGGER.warning("Ignoring malformed range %r; using %s", value, default)
        return default
    return (min(low, high), max(low, high))


def _default_sections() -> Dict[str, Dict[str, str]]:
    adapter = AdapterConfig()
    return {
        "adapter": {
            "elm_name": adapter.elm_name,
            "elm_version": adapter.elm_version,
            "device_description": adapter.device_description,
            "device_id": adapter.device_id,
            "echo": "false",
            "headers": "false",
            "spaces": "true",
            "linefeed": "false",
            "double_linefeed": "false",
            "protocol": adapter.protocol,
        },
        "server": {
            "host": constants.DEFAULT_LISTEN_HOST,
            "port": str(constants.DEFAULT_LISTEN_PORT),
            "autostart": "true",
        },
        "live": {
            "mode": "random",
            "tick_seconds": "1.0",
        },
        "live_static": {
            name: f"{value:g}" for name, value in DEFAULT_STATIC_VALUES.items()
        },
        "live_random": {
            name: f"{low:g},{high:g}"
            for name, (low, high) in DEFAULT_RANDOM_RANGES.items()
        },
        "dtc": {
            "stored": ",".join(DEFAULT_STORED_DTCS),
            "pending": ",".join(DEFAULT_PENDING_DTCS),
            "permanent": ",".join(DEFAULT_PERMANENT_DTCS),
        },
        "logging": {
            "level": "INFO",
            "log_wire": "false",
        },
        "health": {
            "enabled": "false",
            "host": "127.0.0.1",
            "port": "0",
        },
    }


def load_config(path: Optional[Path] = None) -> EmulatorConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(_default_sections())

    if config_path.exists():
        parser.read(config_path)

    protocol = parser.get("adapter", "protocol", fallback="0").strip().upper()
    if protocol not in PROTOCOL_DIGITS or len(protocol) != 1:
        LOGGER.warning("Unknown protocol %r; falling back to automatic", protocol)
        protocol = "0"

    adapter = AdapterConfig(
        elm_name=parser.get("adapter", "elm_name"),
        elm_version=parser.get("adapter", "elm_version"),
        device_description=parser.get("adapter", "device_description"),
        device_id=parser.get("adapter", "device_id", fallback=""),
        echo=parser.getboolean("adapter", "echo", fallback=False),
        headers=parser.getboolean("adapter", "headers", fallback=False),
        spaces=parser.getboolean("adapter", "spaces", fallback=True),
        linefeed=parser.getboolean("adapter", "linefeed", fallback=False),
        double_linefeed=parser.getboolean("adapter", "double_linefeed", fallback=False),
        protocol=protocol,
    )

    try:
        port_value = parser.getint("server", "port", fallback=constants.DEFAULT_LISTEN_PORT)
    except ValueError:
        port_value = constants.DEFAULT_LISTEN_PORT

    server = ServerConfig(
        host=parser.get("server", "host"),
        port=max(0, min(65535, port_value)),
        autostart=parser.getboolean("server", "autostart", fallback=True),
    )

    mode = parser.get("live", "mode", fallback="random").strip().lower()
    if mode not in LIVE_MODES:
        LOGGER.warning("Unknown live data mode %r; using random", mode)
        mode = "random"

    try:
        tick_seconds = parser.getfloat("live", "tick_seconds", fallback=1.0)
    except ValueError:
        tick_seconds = 1.0

    try:
        seed: Optional[int] = parser.getint("live", "seed", fallback=None)
    except ValueError:
        seed = None

    static_values: Dict[str, float] = {}
    for name, default_value in DEFAULT_STATIC_VALUES.items():
        try:
            static_values[name] = parser.getfloat(
                "live_static", name, fallback=default_value
            )
        except ValueError:
            static_values[name] = default_value

    random_ranges = {
        name: _parse_range(
            parser.get("live_random", name, fallback=None), default=default_range
        )
        for name, default_range in DEFAULT_RANDOM_RANGES.items()
    }

    live = LiveDataConfig(
        mode=mode,
        tick_seconds=max(0.05, tick_seconds),
        seed=seed,
        static=static_values,
        random_ranges=random_ranges,
    )

    dtc = DtcConfig(
        stored=_parse_codes(parser.get("dtc", "stored", fallback=None), default=DEFAULT_STORED_DTCS),
        pending=_parse_codes(parser.get("dtc", "pending", fallback=None), default=DEFAULT_PENDING_DTCS),
        permanent=_parse_codes(
            parser.get("dtc", "permanent", fallback=None), default=DEFAULT_PERMANENT_DTCS
        ),
    )

    log_path_value = parser.get("logging", "path", fallback="")
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_wire=parser.getboolean("logging", "log_wire", fallback=False),
    )

    try:
        health_port = parser.getint("health", "port", fallback=0)
    except ValueError:
        health_port = 0

    health = HealthConfig(
        enabled=parser.getboolean("health", "enabled", fallback=False),
        host=parser.get("health", "host", fallback="127.0.0.1"),
        port=max(0, min(65535, health_port)),
    )

    return EmulatorConfig(
        adapter=adapter,
        server=server,
        live=live,
        dtc=dtc,
        logging=logging_config,
        health=health,
        raw=parser,
        path=config_path,
    )


def save_config(config: EmulatorConfig) -> None:
    """Persist the current configuration to disk."""

    config_path = config.path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as stream:
        config.raw.write(stream)
