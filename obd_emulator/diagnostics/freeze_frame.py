"""Freeze-frame snapshot served through Mode 02."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from .. import constants
from ..telemetry.codec import MODE01_ECHO, MODE02_ECHO, TelemetryCodec
from ..telemetry.sample import TelemetrySample

FREEZE_FRAME_PIDS: Tuple[str, ...] = ("010C", "010D", "0105", "010F", "0110", "0111")


@dataclass(frozen=True, slots=True)
class FreezeFrame:
    """Mode 01 payloads captured at one instant; never mutated after capture."""

    pids: Mapping[str, str]
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    trigger: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "pids": dict(self.pids),
            "capturedAt": self.captured_at.isoformat(timespec="seconds"),
            "trigger": self.trigger,
        }


def mode02_payload(payload: str) -> str:
    """Rewrite the service echo of a stored Mode 01 payload to ``42``."""

    head, _, rest = payload.partition(" ")
    if int(head, 16) != MODE01_ECHO:
        return payload
    return f"{MODE02_ECHO:02X} {rest}" if rest else f"{MODE02_ECHO:02X}"


class FreezeFrameStore:
    """Holds at most one :class:`FreezeFrame`; a new capture replaces it."""

    def __init__(
        self,
        codec: Optional[TelemetryCodec] = None,
        *,
        pids: Tuple[str, ...] = FREEZE_FRAME_PIDS,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._codec = codec or TelemetryCodec()
        self._whitelist = pids
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._frame: Optional[FreezeFrame] = None

    @property
    def lock(self) -> threading.Lock:
        return self._lock

    def capture(
        self, sample: TelemetrySample, trigger: Optional[str] = None
    ) -> FreezeFrame:
        encoded: Dict[str, str] = {}
        for code in self._whitelist:
            payload = self._codec.encode(code, sample)
            if payload is not None:
                encoded[code] = payload
        frame = FreezeFrame(
            pids=MappingProxyType(encoded), captured_at=self._clock(), trigger=trigger
        )
        with self._lock:
            self._frame = frame
        return frame

    def get(self) -> Optional[FreezeFrame]:
        with self._lock:
            return self._frame

    def read(self, command: str) -> str:
        """Answer a Mode 02 request such as ``020C`` or ``020C00``."""

        pid = command[2:4].upper()
        with self._lock:
            frame = self._frame
        if frame is None or len(pid) != 2:
            return constants.NO_DATA
        payload = frame.pids.get(f"01{pid}")
        if payload is None:
            return constants.NO_DATA
        return mode02_payload(payload)

    def clear(self) -> bool:
        with self._lock:
            return self.clear_locked()

    def clear_locked(self) -> bool:
        """Clear while the caller already holds :attr:`lock`."""
        had_frame = self._frame is not None
        self._frame = None
        return had_frame
