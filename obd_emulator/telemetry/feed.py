"""Periodic telemetry feed.

A :class:`TelemetryFeed` turns elapsed time into a :class:`TelemetrySample`;
:class:`TelemetryTicker` calls it once per tick and stores the result. The
primary six signals come from configuration (fixed values or uniform random
ranges) and the remaining fields are derived from them so related PIDs stay
plausible relative to each other.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import random
import time
from typing import Callable, Dict, Mapping, Optional, Protocol, Tuple

from ..config import LIVE_FIELDS, LiveDataConfig
from ..events import EventBus, EventName
from .codec import clamp
from .sample import TelemetrySample
from .store import TelemetryStore

LOGGER = logging.getLogger(__name__)


class TelemetryFeed(Protocol):
    """Produces one sample per tick."""

    def next_sample(self, elapsed: float) -> TelemetrySample:
        """Return the vehicle state ``elapsed`` seconds after feed start."""
        ...


def derive_sample(
    primary: Mapping[str, float],
    *,
    elapsed: float,
    distance_km: float = 0.0,
    base: Optional[TelemetrySample] = None,
) -> TelemetrySample:
    """Build a full sample from the six primary signals."""

    template = base or TelemetrySample()
    rpm = clamp(primary.get("engine_rpm", template.engine_rpm), 0.0, 8000.0)
    speed = clamp(primary.get("vehicle_speed", template.vehicle_speed), 0.0, 255.0)
    throttle = clamp(primary.get("throttle_position", template.throttle_position), 0.0, 100.0)
    wave = math.sin(elapsed / 2.0)
    maf = max(0.0, 10.0 + throttle * 0.6 + rpm / 80.0)

    return template.replace(
        engine_rpm=rpm,
        vehicle_speed=speed,
        coolant_temp=clamp(primary.get("coolant_temp", template.coolant_temp), -40.0, 215.0),
        intake_temp=clamp(primary.get("intake_temp", template.intake_temp), -40.0, 215.0),
        throttle_position=throttle,
        fuel_level=clamp(primary.get("fuel_level", template.fuel_level), 0.0, 100.0),
        engine_load=throttle,
        intake_map=clamp(30.0 + throttle * 0.9 + rpm / 100.0, 20.0, 255.0),
        maf=maf,
        max_air_flow=max(template.max_air_flow, maf * 1.5),
        fuel_pressure=300.0 + throttle * 2.0,
        timing_advance=10.0 + wave * 5.0,
        catalyst_temps=(
            400.0 + rpm * 0.1,
            380.0 + rpm * 0.08,
            420.0 + rpm * 0.12,
            390.0 + rpm * 0.09,
        ),
        control_module_voltage=12.5 + math.sin(elapsed / 3.0) * 0.8 + throttle * 0.005,
        runtime_since_start=float(int(elapsed) % 65536),
        warmups_since_clear=int(elapsed // 300) % 256,
        distance_since_clear=min(65535.0, distance_km),
        time_since_codes_cleared=min(65535.0, elapsed // 60),
        absolute_load=throttle * 0.8,
        relative_throttle=throttle * 0.9,
        absolute_throttle_b=throttle * 0.8,
        absolute_throttle_c=throttle * 0.7,
        pedal_position_d=min(100.0, throttle * 1.2),
        pedal_position_e=throttle * 0.6,
        pedal_position_f=throttle * 0.8,
        relative_pedal_position=min(100.0, throttle * 1.2),
        commanded_throttle_actuator=throttle * 0.9,
        commanded_purge=clamp(20.0 + throttle * 0.3, 0.0, 100.0),
    )


class StaticTelemetryFeed:
    """Fixed primary values; only the time-based counters advance."""

    def __init__(self, values: Optional[Mapping[str, float]] = None) -> None:
        self._values: Dict[str, float] = dict(values or {})
        self._distance_km = 0.0
        self._last_elapsed = 0.0

    def next_sample(self, elapsed: float) -> TelemetrySample:
        speed = self._values.get("vehicle_speed", TelemetrySample().vehicle_speed)
        self._distance_km += max(0.0, elapsed - self._last_elapsed) * speed / 3600.0
        self._last_elapsed = elapsed
        return derive_sample(self._values, elapsed=elapsed, distance_km=self._distance_km)


class RandomTelemetryFeed:
    """Draws each primary signal uniformly from its configured range."""

    def __init__(
        self,
        ranges: Optional[Mapping[str, Tuple[float, float]]] = None,
        *,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._ranges: Dict[str, Tuple[float, float]] = dict(ranges or {})
        self._rng = rng or random.Random()
        self._distance_km = 0.0
        self._last_elapsed = 0.0

    def next_sample(self, elapsed: float) -> TelemetrySample:
        primary: Dict[str, float] = {}
        for name in LIVE_FIELDS:
            bounds = self._ranges.get(name)
            if bounds is None:
                continue
            low, high = sorted(bounds)
            primary[name] = float(self._rng.randint(int(low), int(high)))

        speed = primary.get("vehicle_speed", 0.0)
        self._distance_km += max(0.0, elapsed - self._last_elapsed) * speed / 3600.0
        self._last_elapsed = elapsed
        return derive_sample(primary, elapsed=elapsed, distance_km=self._distance_km)


def build_feed(config: LiveDataConfig) -> TelemetryFeed:
    if config.mode == "static":
        return StaticTelemetryFeed(config.static)
    return RandomTelemetryFeed(config.random_ranges, rng=random.Random(config.seed))


class TelemetryTicker:
    """Background task that refreshes the telemetry store once per tick."""

    def __init__(
        self,
        feed: TelemetryFeed,
        store: TelemetryStore,
        *,
        interval: float = 1.0,
        events: Optional[EventBus] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._feed = feed
        self._store = store
        self._interval = interval
        self._events = events
        self._clock = clock
        self._started_at: Optional[float] = None
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def feed(self) -> TelemetryFeed:
        return self._feed

    def set_feed(self, feed: TelemetryFeed) -> None:
        self._feed = feed

    def tick(self) -> TelemetrySample:
        now = self._clock()
        if self._started_at is None:
            self._started_at = now
        sample = self._feed.next_sample(now - self._started_at)
        self._store.update(sample)
        if self._events is not None:
            self._events.publish(EventName.LIVE_DATA, sample=sample.as_dict())
        return sample

    def start(self) -> None:
        if self.is_running:
            LOGGER.warning("Telemetry ticker already running")
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _run(self) -> None:
        LOGGER.info("Telemetry ticker started (interval %.2fs)", self._interval)
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                LOGGER.exception("Telemetry feed tick failed")
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
        LOGGER.info("Telemetry ticker stopped")
