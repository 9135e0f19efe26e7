"""Monitor readiness bytes for PID 0101.

The four data bytes follow the SAE J1979 spark-ignition layout:

* ``A``: bit 7 is the MIL, bits 0-6 the number of confirmed codes.
* ``B``: bits 0-2 mark the continuous monitors (misfire, fuel system,
  comprehensive components) as supported, bits 4-6 flag them incomplete.
* ``C``: supported non-continuous monitors.
* ``D``: incomplete flags for the monitors in ``C``, same bit positions.

A monitor is reported incomplete whenever a stored code belongs to it, which
is what a scan tool sees right after a fault sets and before the drive cycle
that would re-run the monitor.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

MAX_REPORTED_DTCS = 0x7F
MIL_BIT = 0x80

CONTINUOUS_SUPPORTED = 0x07
NON_CONTINUOUS_BASELINE = 0xE5


@dataclass(frozen=True, slots=True)
class MonitorGroup:
    name: str
    prefixes: Tuple[str, ...]
    bit: int
    continuous: bool = False

    def matches(self, code: str) -> bool:
        return code.upper().startswith(self.prefixes)


MONITOR_GROUPS: Tuple[MonitorGroup, ...] = (
    MonitorGroup("misfire", ("P030",), 0, continuous=True),
    MonitorGroup("fuel_system", ("P017", "P0087", "P0088", "P0089"), 1, continuous=True),
    MonitorGroup(
        "components",
        ("P010", "P011", "P012", "P05", "P06", "P07"),
        2,
        continuous=True,
    ),
    MonitorGroup("catalyst", ("P042", "P043"), 0),
    MonitorGroup("evap", ("P044", "P045"), 2),
    MonitorGroup("secondary_air", ("P041",), 3),
    MonitorGroup("o2_sensor", ("P013", "P014", "P015", "P016"), 5),
    MonitorGroup(
        "o2_heater", ("P003", "P005", "P0135", "P0141", "P0155", "P0161"), 6
    ),
    MonitorGroup("egr", ("P040",), 7),
)


def incomplete_monitors(
    stored: Iterable[str], groups: Sequence[MonitorGroup] = MONITOR_GROUPS
) -> Tuple[MonitorGroup, ...]:
    codes = [code.upper() for code in stored]
    return tuple(group for group in groups if any(group.matches(code) for code in codes))


def derive_monitor_status(
    stored: Sequence[str],
    mil_on: bool,
    groups: Optional[Sequence[MonitorGroup]] = None,
) -> Tuple[int, int, int, int]:
    """Compute bytes ``A B C D`` of PID 0101 from the confirmed code list."""

    byte_a = (MIL_BIT if mil_on else 0) | min(MAX_REPORTED_DTCS, len(stored))
    byte_b = CONTINUOUS_SUPPORTED
    byte_c = NON_CONTINUOUS_BASELINE
    byte_d = 0

    for group in incomplete_monitors(stored, groups or MONITOR_GROUPS):
        if group.continuous:
            byte_b |= 1 << (group.bit + 4)
        else:
            byte_c |= 1 << group.bit
            byte_d |= 1 << group.bit

    return byte_a, byte_b, byte_c, byte_d
