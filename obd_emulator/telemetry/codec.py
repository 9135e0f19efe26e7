"""SAE J1979 Mode 01 payload codec.

Each supported PID is described by a :class:`PidEntry` made of one or more
:class:`FieldCodec` parts. A part reads one physical quantity from a
:class:`~obd_emulator.telemetry.sample.TelemetrySample`, clamps it to the
range the standard can represent, scales it and splits it into big-endian
bytes. The inverse transform is kept next to it so tests and tooling can
decode what the emulator produced.

Payloads are rendered in the adapter's canonical spaced form, e.g.
``"41 0C 1F 40"``. Presentation options are applied later by the line
formatter.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from operator import attrgetter
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .sample import TelemetrySample

MODE01_ECHO = 0x41
MODE02_ECHO = 0x42

READINESS_PID = "0101"
SUPPORTED_PID_BASES = (0x00, 0x20, 0x40)

Source = Callable[[TelemetrySample], float]
Decoded = Union[float, Tuple[float, ...]]


class PayloadDecodeError(ValueError):
    """Raised when a payload does not match the PID it is decoded against."""


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    # Absorb binary representation error so 50 * 2.55 rounds like 127.5.
    return int(math.floor(round(value, 9) + 0.5))


def format_bytes(values: Iterable[int]) -> str:
    return " ".join(f"{value:02X}" for value in values)


def parse_bytes(payload: str) -> List[int]:
    compact = "".join(payload.split())
    if not compact or len(compact) % 2:
        raise PayloadDecodeError(f"Malformed payload: {payload!r}")
    try:
        return [int(compact[index : index + 2], 16) for index in range(0, len(compact), 2)]
    except ValueError as exc:
        raise PayloadDecodeError(f"Malformed payload: {payload!r}") from exc


@dataclass(frozen=True, slots=True)
class FieldCodec:
    """Linear transform ``raw = round((value + offset) * scale)``."""

    source: Source
    low: float
    high: float
    scale: float = 1.0
    offset: float = 0.0
    size: int = 1
    signed: bool = False

    def clamp(self, value: float) -> float:
        return clamp(value, self.low, self.high)

    def encode(self, sample: TelemetrySample) -> Tuple[int, ...]:
        value = self.clamp(float(self.source(sample)))
        raw = round_half_up((value + self.offset) * self.scale)
        bits = 8 * self.size
        if self.signed:
            raw = int(clamp(raw, -(1 << (bits - 1)), (1 << (bits - 1)) - 1))
        else:
            raw = int(clamp(raw, 0, (1 << bits) - 1))
        return tuple(raw.to_bytes(self.size, "big", signed=self.signed))

    def decode(self, data: Sequence[int]) -> float:
        raw = int.from_bytes(bytes(data), "big", signed=self.signed)
        return raw / self.scale - self.offset

    @property
    def resolution(self) -> float:
        return 1.0 / self.scale


@dataclass(frozen=True, slots=True)
class PidEntry:
    """A Mode 01 parameter with a fixed payload layout."""

    code: str
    name: str
    fields: Tuple[FieldCodec, ...]

    @property
    def pid(self) -> int:
        return int(self.code[2:], 16)

    @property
    def size(self) -> int:
        return sum(item.size for item in self.fields)

    def value(self, sample: TelemetrySample) -> Tuple[int, ...]:
        data: List[int] = []
        for item in self.fields:
            data.extend(item.encode(sample))
        return tuple(data)

    def payload(self, sample: TelemetrySample, *, echo: int = MODE01_ECHO) -> str:
        return format_bytes((echo, self.pid, *self.value(sample)))

    def decode(self, payload: str) -> Decoded:
        data = parse_bytes(payload)
        if len(data) != self.size + 2:
            raise PayloadDecodeError(
                f"{self.code} expects {self.size} data bytes, got {len(data) - 2}"
            )
        if data[0] not in (MODE01_ECHO, MODE02_ECHO) or data[1] != self.pid:
            raise PayloadDecodeError(f"Payload {payload!r} is not a {self.code} reply")

        values: List[float] = []
        position = 2
        for item in self.fields:
            values.append(item.decode(data[position : position + item.size]))
            position += item.size
        if len(values) == 1:
            return values[0]
        return tuple(values)


def _attr(name: str) -> Source:
    return attrgetter(name)


def _item(name: str, index: int) -> Source:
    getter = attrgetter(name)
    return lambda sample: getter(sample)[index]


def _const(value: float) -> FieldCodec:
    return FieldCodec(source=lambda _sample: value, low=value, high=value)


def _percent(source: Source) -> FieldCodec:
    return FieldCodec(source=source, low=0.0, high=100.0, scale=2.55)


def _temperature(source: Source) -> FieldCodec:
    return FieldCodec(source=source, low=-40.0, high=215.0, offset=40.0)


def _fuel_trim(source: Source) -> FieldCodec:
    return FieldCodec(source=source, low=-100.0, high=255 / 1.28 - 100, scale=1.28, offset=100.0)


def _byte(source: Source, high: float = 255.0) -> FieldCodec:
    return FieldCodec(source=source, low=0.0, high=high)


def _word(source: Source, scale: float = 1.0) -> FieldCodec:
    return FieldCodec(source=source, low=0.0, high=65535 / scale, scale=scale, size=2)


def _catalyst(source: Source) -> FieldCodec:
    return FieldCodec(source=source, low=-40.0, high=6513.5, scale=10.0, offset=40.0, size=2)


def _o2_voltage(source: Source) -> FieldCodec:
    return FieldCodec(source=source, low=0.0, high=1.275, scale=200.0)


def _pid(code: str, name: str, *fields: FieldCodec) -> PidEntry:
    return PidEntry(code=code, name=name, fields=tuple(fields))


def _build_mode01_pids() -> Tuple[PidEntry, ...]:
    entries: List[PidEntry] = [
        _pid("0103", "Fuel system status", _byte(_attr("fuel_system_status")), _const(0)),
        _pid("0104", "Calculated engine load", _percent(_attr("engine_load"))),
        _pid("0105", "Engine coolant temperature", _temperature(_attr("coolant_temp"))),
        _pid("0106", "Short term fuel trim bank 1", _fuel_trim(_attr("short_term_fuel_trim_1"))),
        _pid("0107", "Long term fuel trim bank 1", _fuel_trim(_attr("long_term_fuel_trim_1"))),
        _pid("0108", "Short term fuel trim bank 2", _fuel_trim(_attr("short_term_fuel_trim_2"))),
        _pid("0109", "Long term fuel trim bank 2", _fuel_trim(_attr("long_term_fuel_trim_2"))),
        _pid(
            "010A",
            "Fuel pressure",
            FieldCodec(source=_attr("fuel_pressure"), low=0.0, high=765.0, scale=1 / 3),
        ),
        _pid("010B", "Intake manifold absolute pressure", _byte(_attr("intake_map"))),
        _pid("010C", "Engine speed", _word(_attr("engine_rpm"), scale=4.0)),
        _pid("010D", "Vehicle speed", _byte(_attr("vehicle_speed"))),
        _pid(
            "010E",
            "Timing advance",
            FieldCodec(source=_attr("timing_advance"), low=-64.0, high=63.5, scale=2.0, offset=64.0),
        ),
        _pid("010F", "Intake air temperature", _temperature(_attr("intake_temp"))),
        _pid("0110", "Mass air flow rate", _word(_attr("maf"), scale=100.0)),
        _pid("0111", "Throttle position", _percent(_attr("throttle_position"))),
    ]

    for index in range(8):
        bank, sensor = divmod(index, 4)
        entries.append(
            _pid(
                f"01{0x14 + index:02X}",
                f"Oxygen sensor bank {bank + 1} sensor {sensor + 1}",
                _o2_voltage(_item("o2_voltages", index)),
                _fuel_trim(_item("o2_trims", index)),
            )
        )

    entries.extend(
        [
            _pid("011C", "OBD standards", _byte(_attr("obd_standard"))),
            _pid("011F", "Run time since engine start", _word(_attr("runtime_since_start"))),
            _pid("0121", "Distance traveled with MIL on", _word(_attr("distance_with_mil"))),
            _pid(
                "0124",
                "Oxygen sensor 1 equivalence ratio and voltage",
                _word(_attr("o2_lambda"), scale=32768.0),
                _word(_item("o2_voltages", 0), scale=8192.0),
            ),
            _pid("012E", "Commanded evaporative purge", _percent(_attr("commanded_purge"))),
            _pid("012F", "Fuel tank level input", _percent(_attr("fuel_level"))),
            _pid("0130", "Warm-ups since codes cleared", _byte(_attr("warmups_since_clear"))),
            _pid("0131", "Distance traveled since codes cleared", _word(_attr("distance_since_clear"))),
            _pid("0133", "Absolute barometric pressure", _byte(_attr("barometric_pressure"))),
        ]
    )

    for index, label in enumerate(
        ("bank 1 sensor 1", "bank 2 sensor 1", "bank 1 sensor 2", "bank 2 sensor 2")
    ):
        entries.append(
            _pid(
                f"01{0x3C + index:02X}",
                f"Catalyst temperature {label}",
                _catalyst(_item("catalyst_temps", index)),
            )
        )

    entries.extend(
        [
            _pid("0142", "Control module voltage", _word(_attr("control_module_voltage"), scale=1000.0)),
            _pid(
                "0143",
                "Absolute load value",
                FieldCodec(source=_attr("absolute_load"), low=0.0, high=25700.0, scale=2.55, size=2),
            ),
            _pid(
                "0144",
                "Commanded equivalence ratio",
                _word(_attr("commanded_equiv_ratio"), scale=32768.0),
            ),
            _pid("0145", "Relative throttle position", _percent(_attr("relative_throttle"))),
            _pid("0146", "Ambient air temperature", _temperature(_attr("ambient_temp"))),
            _pid("0147", "Absolute throttle position B", _percent(_attr("absolute_throttle_b"))),
            _pid("0148", "Absolute throttle position C", _percent(_attr("absolute_throttle_c"))),
            _pid("0149", "Accelerator pedal position D", _percent(_attr("pedal_position_d"))),
            _pid("014A", "Accelerator pedal position E", _percent(_attr("pedal_position_e"))),
            _pid("014B", "Accelerator pedal position F", _percent(_attr("pedal_position_f"))),
            _pid(
                "014C",
                "Commanded throttle actuator",
                _percent(_attr("commanded_throttle_actuator")),
            ),
            _pid("014D", "Time run with MIL on", _word(_attr("time_run_with_mil"))),
            _pid("014E", "Time since trouble codes cleared", _word(_attr("time_since_codes_cleared"))),
            _pid(
                "014F",
                "Maximum equivalence ratio, O2 voltage, O2 current and MAP",
                _byte(_attr("max_equiv_ratio")),
                _byte(_attr("max_o2_voltage")),
                _byte(_attr("max_o2_current")),
                FieldCodec(source=_attr("max_intake_map"), low=0.0, high=2550.0, scale=0.1),
            ),
            _pid(
                "0150",
                "Maximum mass air flow rate",
                FieldCodec(source=_attr("max_air_flow"), low=0.0, high=2550.0, scale=0.1),
                _const(0),
                _const(0),
                _const(0),
            ),
            _pid("0151", "Fuel type", _byte(_attr("fuel_type"))),
            _pid("0152", "Ethanol fuel percentage", _percent(_attr("ethanol_fuel"))),
            _pid(
                "0153",
                "Absolute evap system vapor pressure",
                _word(_attr("abs_evap_pressure"), scale=200.0),
            ),
            _pid(
                "0154",
                "Evap system vapor pressure",
                FieldCodec(
                    source=_attr("evap_pressure"),
                    low=-32768.0,
                    high=32767.0,
                    size=2,
                    signed=True,
                ),
            ),
            _pid(
                "0155",
                "Short term secondary O2 trim banks 1 and 3",
                _fuel_trim(_item("short_term_secondary_o2_trims", 0)),
                _fuel_trim(_item("short_term_secondary_o2_trims", 2)),
            ),
            _pid(
                "0156",
                "Long term secondary O2 trim banks 1 and 3",
                _fuel_trim(_item("long_term_secondary_o2_trims", 0)),
                _fuel_trim(_item("long_term_secondary_o2_trims", 2)),
            ),
            _pid(
                "0157",
                "Short term secondary O2 trim banks 2 and 4",
                _fuel_trim(_item("short_term_secondary_o2_trims", 1)),
                _fuel_trim(_item("short_term_secondary_o2_trims", 3)),
            ),
            _pid(
                "0158",
                "Long term secondary O2 trim banks 2 and 4",
                _fuel_trim(_item("long_term_secondary_o2_trims", 1)),
                _fuel_trim(_item("long_term_secondary_o2_trims", 3)),
            ),
            _pid(
                "015A",
                "Relative accelerator pedal position",
                _percent(_attr("relative_pedal_position")),
            ),
            _pid("015C", "Engine oil temperature", _temperature(_attr("oil_temp"))),
            _pid("015E", "Engine fuel rate", _word(_attr("fuel_rate"), scale=20.0)),
        ]
    )
    return tuple(entries)


MODE01_PIDS: Tuple[PidEntry, ...] = _build_mode01_pids()


def encode_monitor_status(status: Sequence[int]) -> str:
    """Render the four readiness bytes as a PID 01 reply."""

    if len(status) != 4:
        raise ValueError("Monitor status must be exactly four bytes")
    return format_bytes((MODE01_ECHO, 0x01, *status))


def decode_monitor_status(payload: str) -> Tuple[int, int, int, int]:
    data = parse_bytes(payload)
    if len(data) != 6 or data[1] != 0x01:
        raise PayloadDecodeError(f"Payload {payload!r} is not a 0101 reply")
    return data[2], data[3], data[4], data[5]


class TelemetryCodec:
    """Lookup table of Mode 01 encoders plus the supported-PID bitmaps."""

    def __init__(self, entries: Iterable[PidEntry] = MODE01_PIDS) -> None:
        self._entries: Dict[str, PidEntry] = {entry.code: entry for entry in entries}
        self._bitmaps = {
            f"01{base:02X}": self._compute_bitmap(base) for base in SUPPORTED_PID_BASES
        }

    @property
    def entries(self) -> Mapping[str, PidEntry]:
        return dict(self._entries)

    def get(self, code: str) -> Optional[PidEntry]:
        return self._entries.get(code.upper())

    def supports(self, code: str) -> bool:
        code = code.upper()
        return code in self._entries or code in self._bitmaps or code == READINESS_PID

    def encode(self, code: str, sample: TelemetrySample) -> Optional[str]:
        """Return the Mode 01 payload for ``code`` or ``None`` when unknown.

        Supported-PID bitmaps are answered here as well. Readiness needs the
        DTC registry and is encoded with :func:`encode_monitor_status`.
        """

        code = code.upper()
        bitmap = self._bitmaps.get(code)
        if bitmap is not None:
            return format_bytes((MODE01_ECHO, int(code[2:], 16), *bitmap))
        entry = self._entries.get(code)
        if entry is None:
            return None
        return entry.payload(sample)

    def decode(self, code: str, payload: str) -> Decoded:
        entry = self.get(code)
        if entry is None:
            raise KeyError(code)
        return entry.decode(payload)

    def supported_pids(self, base: int) -> Tuple[int, int, int, int]:
        return self._bitmaps[f"01{base:02X}"]

    def _implemented(self) -> set[int]:
        implemented = {entry.pid for entry in self._entries.values()}
        implemented.add(int(READINESS_PID[2:], 16))
        highest = max(implemented)
        for base in SUPPORTED_PID_BASES[1:]:
            if highest > base:
                implemented.add(base)
        return implemented

    def _compute_bitmap(self, base: int) -> Tuple[int, int, int, int]:
        bitmap = [0, 0, 0, 0]
        for pid in self._implemented():
            position = pid - base - 1
            if 0 <= position < 32:
                bitmap[position // 8] |= 0x80 >> (position % 8)
        return bitmap[0], bitmap[1], bitmap[2], bitmap[3]
