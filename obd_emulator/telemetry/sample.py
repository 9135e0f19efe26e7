"""Physical vehicle state delivered by the telemetry feed once per tick."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Dict, Tuple


@dataclass(frozen=True, slots=True)
class TelemetrySample:
    """Immutable set of physical readings.

    Units follow the J1979 definitions of the PIDs that expose them: rpm,
    km/h, degC, percent, kPa (Pa for ``evap_pressure``), g/s, volts, seconds
    for ``runtime_since_start`` and minutes for the MIL/clear timers.
    """

    engine_rpm: float = 2000.0
    vehicle_speed: float = 60.0
    coolant_temp: float = 85.0
    intake_temp: float = 30.0
    throttle_position: float = 25.0
    fuel_level: float = 50.0
    engine_load: float = 25.0
    fuel_system_status: int = 2
    short_term_fuel_trim_1: float = 0.0
    long_term_fuel_trim_1: float = 0.0
    short_term_fuel_trim_2: float = 0.0
    long_term_fuel_trim_2: float = 0.0
    fuel_pressure: float = 320.0
    intake_map: float = 40.0
    barometric_pressure: float = 101.0
    timing_advance: float = 12.0
    maf: float = 15.0
    # Bank 1 sensors 1-4 followed by bank 2 sensors 1-4.
    o2_voltages: Tuple[float, ...] = (0.75, 0.70, 0.80, 0.0, 0.72, 0.68, 0.0, 0.0)
    o2_trims: Tuple[float, ...] = (0.0, -3.125, 1.5625, 0.0, 0.0, 3.125, 0.0, 0.0)
    obd_standard: int = 1
    runtime_since_start: float = 0.0
    distance_with_mil: float = 0.0
    o2_lambda: float = 1.0
    commanded_purge: float = 20.0
    warmups_since_clear: int = 0
    distance_since_clear: float = 0.0
    # Bank 1 sensor 1, bank 2 sensor 1, bank 1 sensor 2, bank 2 sensor 2.
    catalyst_temps: Tuple[float, ...] = (450.0, 430.0, 470.0, 440.0)
    control_module_voltage: float = 12.5
    absolute_load: float = 20.0
    commanded_equiv_ratio: float = 1.0
    relative_throttle: float = 22.5
    ambient_temp: float = 27.0
    absolute_throttle_b: float = 20.0
    absolute_throttle_c: float = 17.5
    pedal_position_d: float = 30.0
    pedal_position_e: float = 15.0
    pedal_position_f: float = 20.0
    commanded_throttle_actuator: float = 22.5
    time_run_with_mil: float = 0.0
    time_since_codes_cleared: float = 0.0
    max_equiv_ratio: float = 2.0
    max_o2_voltage: float = 1.0
    max_o2_current: float = 0.0
    max_intake_map: float = 250.0
    max_air_flow: float = 300.0
    fuel_type: int = 1
    ethanol_fuel: float = 0.0
    abs_evap_pressure: float = 5.5
    evap_pressure: float = 900.0
    # Banks 1-4.
    short_term_secondary_o2_trims: Tuple[float, ...] = (0.0, 0.0, 0.0, 0.0)
    long_term_secondary_o2_trims: Tuple[float, ...] = (0.0, 0.0, 0.0, 0.0)
    relative_pedal_position: float = 30.0
    oil_temp: float = 90.0
    fuel_rate: float = 1.5

    def replace(self, **changes: Any) -> "TelemetrySample":
        return dataclasses.replace(self, **changes)

    def as_dict(self) -> Dict[str, Any]:
        return {
            item.name: getattr(self, item.name) for item in dataclasses.fields(self)
        }


SAMPLE_FIELDS = frozenset(item.name for item in dataclasses.fields(TelemetrySample))
