"""Simulated vehicle state and its J1979 encodings."""

from .codec import (
    MODE01_PIDS,
    PayloadDecodeError,
    PidEntry,
    TelemetryCodec,
    decode_monitor_status,
    encode_monitor_status,
)
from .feed import (
    RandomTelemetryFeed,
    StaticTelemetryFeed,
    TelemetryFeed,
    TelemetryTicker,
    build_feed,
)
from .sample import TelemetrySample
from .store import TelemetryStore

__all__ = [
    "MODE01_PIDS",
    "PayloadDecodeError",
    "PidEntry",
    "RandomTelemetryFeed",
    "StaticTelemetryFeed",
    "TelemetryCodec",
    "TelemetryFeed",
    "TelemetrySample",
    "TelemetryStore",
    "TelemetryTicker",
    "build_feed",
    "decode_monitor_status",
    "encode_monitor_status",
]
