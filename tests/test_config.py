from pathlib import Path

from obd_emulator.config import (
    DEFAULT_RANDOM_RANGES,
    DEFAULT_STATIC_VALUES,
    load_config,
    save_config,
)


def test_load_config_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "obd-emulator.cfg"
    config = load_config(config_path)

    assert config.path == config_path
    assert config.adapter.elm_name == "ELM327"
    assert config.adapter.elm_version == "v1.2"
    assert config.adapter.echo is False
    assert config.adapter.headers is False
    assert config.adapter.spaces is True
    assert config.adapter.protocol == "0"
    assert config.server.port == 35000
    assert config.server.autostart is True
    assert config.live.mode == "random"
    assert config.live.static == DEFAULT_STATIC_VALUES
    assert config.live.random_ranges == DEFAULT_RANDOM_RANGES
    assert config.dtc.stored == ["P0301", "P0420"]
    assert config.dtc.pending == ["P0171"]
    assert config.dtc.permanent == ["P0301"]
    assert config.logging.path is None
    assert config.health.enabled is False


def test_load_config_overrides_defaults(tmp_path: Path) -> None:
    config_file = tmp_path / "obd-emulator.cfg"
    config_file.write_text(
        """
[adapter]
device_id = BENCH-01
headers = true
spaces = false
protocol = a

[server]
host = 127.0.0.1
port = 35001
autostart = false

[live]
mode = static
tick_seconds = 0.5
seed = 42

[live_static]
engine_rpm = 850

[live_random]
coolant_temp = -10, 40

[dtc]
stored = p0171, P0300
pending =
permanent = P0300

[logging]
level = DEBUG
log_wire = true

[health]
enabled = true
port = 8035
""",
        encoding="utf-8",
    )

    config = load_config(config_file)

    assert config.adapter.device_id == "BENCH-01"
    assert config.adapter.headers is True
    assert config.adapter.spaces is False
    assert config.adapter.protocol == "A"
    assert config.server.host == "127.0.0.1"
    assert config.server.port == 35001
    assert config.server.autostart is False
    assert config.live.mode == "static"
    assert config.live.tick_seconds == 0.5
    assert config.live.seed == 42
    assert config.live.static["engine_rpm"] == 850
    assert config.live.static["vehicle_speed"] == DEFAULT_STATIC_VALUES["vehicle_speed"]
    assert config.live.random_ranges["coolant_temp"] == (-10.0, 40.0)
    assert config.dtc.stored == ["P0171", "P0300"]
    assert config.dtc.pending == []
    assert config.dtc.permanent == ["P0300"]
    assert config.logging.level == "DEBUG"
    assert config.logging.log_wire is True
    assert config.health.enabled is True
    assert config.health.port == 8035


def test_invalid_values_fall_back(tmp_path: Path) -> None:
    config_file = tmp_path / "obd-emulator.cfg"
    config_file.write_text(
        """
[adapter]
protocol = 42

[server]
port = not-a-port

[live]
mode = sinewave
tick_seconds = fast

[live_random]
engine_rpm = 100

[dtc]
stored = P0301, BOGUS, P99999
""",
        encoding="utf-8",
    )

    config = load_config(config_file)

    assert config.adapter.protocol == "0"
    assert config.server.port == 35000
    assert config.live.mode == "random"
    assert config.live.tick_seconds == 1.0
    assert config.live.random_ranges["engine_rpm"] == DEFAULT_RANDOM_RANGES["engine_rpm"]
    assert config.dtc.stored == ["P0301"]


def test_save_config_round_trips_raw_parser(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "obd-emulator.cfg"
    config = load_config(config_path)
    config.raw.set("server", "port", "36000")

    save_config(config)

    assert config_path.exists()
    assert load_config(config_path).server.port == 36000
