"""Trouble codes, readiness, freeze frames and on-board test results."""

from .dtc import (
    DtcChange,
    DtcKind,
    DtcRegistry,
    DtcSnapshot,
    InvalidDtcError,
    decode_dtc,
    encode_dtc,
    format_dtc_response,
)
from .freeze_frame import FREEZE_FRAME_PIDS, FreezeFrame, FreezeFrameStore
from .mode06 import DEFAULT_MODE06_TESTS, Mode06Registry, Mode06Test
from .readiness import MONITOR_GROUPS, MonitorGroup, derive_monitor_status

__all__ = [
    "DEFAULT_MODE06_TESTS",
    "DtcChange",
    "DtcKind",
    "DtcRegistry",
    "DtcSnapshot",
    "FREEZE_FRAME_PIDS",
    "FreezeFrame",
    "FreezeFrameStore",
    "InvalidDtcError",
    "MONITOR_GROUPS",
    "Mode06Registry",
    "Mode06Test",
    "MonitorGroup",
    "decode_dtc",
    "derive_monitor_status",
    "encode_dtc",
    "format_dtc_response",
]
